"""HTTP tests for the identify API."""

import main
from exceptions import InvariantViolationError, StoreContentionError, StoreUnavailableError


def test_health_returns_ok(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["service"]
    assert "timestamp" in body


def test_root_banner(client):
    response = client.get("/")

    assert response.status_code == 200
    assert "is up" in response.json()["message"]


def test_identify_new_contact(client):
    response = client.post(
        "/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"}
    )

    assert response.status_code == 200
    contact = response.json()["contact"]
    assert contact["emails"] == ["lorraine@hillvalley.edu"]
    assert contact["phoneNumbers"] == ["123456"]
    assert contact["secondaryContactIds"] == []
    assert isinstance(contact["primaryContactId"], int)


def test_identify_links_and_merges(client):
    george = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
    biff = client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

    response = client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"})

    assert response.status_code == 200
    assert response.json() == {
        "contact": {
            "primaryContactId": george.json()["contact"]["primaryContactId"],
            "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
            "phoneNumbers": ["919191", "717171"],
            "secondaryContactIds": [biff.json()["contact"]["primaryContactId"]],
        }
    }


def test_numeric_phone_and_null_email(client):
    response = client.post("/identify", json={"email": None, "phoneNumber": 123456})

    assert response.status_code == 200
    assert response.json()["contact"]["phoneNumbers"] == ["123456"]
    assert response.json()["contact"]["emails"] == []


def test_missing_both_identifiers_is_rejected(client):
    response = client.post("/identify", json={})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid request body"
    assert body["details"]


def test_blank_identifiers_are_rejected(client):
    response = client.post("/identify", json={"email": "", "phoneNumber": "  "})

    assert response.status_code == 400


def test_malformed_email_is_rejected(client):
    response = client.post("/identify", json={"email": "not-an-email", "phoneNumber": "1"})

    assert response.status_code == 400


def test_email_is_stored_as_submitted(client):
    response = client.post("/identify", json={"email": "George@HillValley.EDU"})

    assert response.status_code == 200
    assert response.json()["contact"]["emails"] == ["George@HillValley.EDU"]


def test_emails_differing_in_case_stay_separate(client):
    first = client.post("/identify", json={"email": "george@hillvalley.edu"})
    second = client.post("/identify", json={"email": "George@HillValley.EDU"})

    assert second.json()["contact"]["primaryContactId"] != first.json()["contact"]["primaryContactId"]


def test_display_name_email_is_rejected(client):
    response = client.post("/identify", json={"email": "Doc Brown <doc@x.com>"})

    assert response.status_code == 400


def test_email_whitespace_is_not_trimmed(client):
    response = client.post("/identify", json={"email": " doc@hillvalley.edu "})

    assert response.status_code == 400


def test_phone_whitespace_is_trimmed(client):
    response = client.post("/identify", json={"phoneNumber": " 123456 "})

    assert response.status_code == 200
    assert response.json()["contact"]["phoneNumbers"] == ["123456"]


def test_invariant_violation_is_internal_error(client, monkeypatch):
    def broken(email, phone):
        raise InvariantViolationError("No primary contact found in the related contacts")

    monkeypatch.setattr(main, "identify_contact", broken)

    response = client.post("/identify", json={"email": "a@test.com"})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert "contact" not in response.json()


def test_contention_is_service_unavailable(client, monkeypatch):
    def busy(email, phone):
        raise StoreContentionError(3)

    monkeypatch.setattr(main, "identify_contact", busy)

    response = client.post("/identify", json={"email": "a@test.com"})

    assert response.status_code == 503


def test_unavailable_store_is_service_unavailable(client, monkeypatch):
    def down(email, phone):
        raise StoreUnavailableError("unable to open database file")

    monkeypatch.setattr(main, "identify_contact", down)

    response = client.post("/identify", json={"phoneNumber": "1"})

    assert response.status_code == 503


def test_unexpected_error_is_internal_error(client, monkeypatch):
    def boom(email, phone):
        raise RuntimeError("boom")

    monkeypatch.setattr(main, "identify_contact", boom)

    response = client.post("/identify", json={"phoneNumber": "1"})

    assert response.status_code == 500
    assert response.json()["message"] == "An error occurred while processing the request"


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_is_generated(client):
    response = client.get("/health")

    assert response.headers["X-Request-ID"]
