"""Pytest configuration and fixtures."""

import pytest
from fastapi.testclient import TestClient

from db_setup import get_db_connection, init_db
from settings import settings


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the ledger at a fresh SQLite file for each test."""
    path = str(tmp_path / "contacts.db")
    monkeypatch.setattr(settings, "database_path", path)
    init_db(path)
    return path


@pytest.fixture
def conn(db_path):
    connection = get_db_connection(db_path)
    yield connection
    connection.close()


@pytest.fixture
def client(db_path):
    from main import app

    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
