"""Identity reconciliation over the contact ledger.

An identify call runs, inside one write transaction:

    match -> close over linked groups -> decide -> create or merge -> consolidate

Groups are two levels deep: a primary (the oldest record) and the
secondaries whose ``linkedId`` points at it.
"""

import sqlite3
from enum import Enum
from typing import Iterable, List, Optional

from contact_store import (
    find_linked_contacts,
    find_matching_contacts,
    insert_contact,
    relink_contacts,
)
from db_models import ContactRecord, ContactResponse, LinkPrecedence
from db_setup import transaction
from exceptions import (
    InvariantViolationError,
    StoreContentionError,
    StoreUnavailableError,
)
from logging_config import get_logger
from settings import settings

logger = get_logger(__name__)


class IdentifyOutcome(str, Enum):
    UNCHANGED = "unchanged"
    CREATE_SECONDARY = "create_secondary"
    MERGE_PRIMARIES = "merge_primaries"


def get_all_linked_contacts(
    conn: sqlite3.Connection, contacts: Iterable[ContactRecord]
) -> List[ContactRecord]:
    """Expand matched contacts to every record of their identity groups."""
    primary_ids = set()
    for contact in contacts:
        if contact.governing_id is None:
            raise InvariantViolationError(
                f"Secondary contact {contact.id} has no linked primary"
            )
        primary_ids.add(contact.governing_id)
    return find_linked_contacts(conn, primary_ids)


def primary_contacts(contacts: Iterable[ContactRecord]) -> List[ContactRecord]:
    return [c for c in contacts if c.is_primary]


def find_primary_contact(contacts: Iterable[ContactRecord]) -> ContactRecord:
    """Return the single primary of a linked group."""
    primaries = primary_contacts(contacts)
    if not primaries:
        raise InvariantViolationError("No primary contact found in the related contacts")
    if len(primaries) > 1:
        raise InvariantViolationError(
            f"Linked group has {len(primaries)} primary contacts: {[c.id for c in primaries]}"
        )
    return primaries[0]


def has_exact_match(
    contacts: Iterable[ContactRecord], email: Optional[str], phone: Optional[str]
) -> bool:
    # None only equals None here, never a concrete value
    return any(c.email == email and c.phoneNumber == phone for c in contacts)


def has_new_information(
    contacts: List[ContactRecord], email: Optional[str], phone: Optional[str]
) -> bool:
    new_email = email is not None and all(c.email != email for c in contacts)
    new_phone = phone is not None and all(c.phoneNumber != phone for c in contacts)
    return new_email or new_phone


def decide(
    contacts: List[ContactRecord], email: Optional[str], phone: Optional[str]
) -> IdentifyOutcome:
    """Pick what a submission does to an already-closed group.

    Two primaries in one closure means the submission bridged separate
    identities; that merge is selected over creating a secondary. The
    exact-match check only decides whether a new row is needed, so it never
    suppresses a merge.
    """
    if len(primary_contacts(contacts)) > 1:
        return IdentifyOutcome.MERGE_PRIMARIES
    if has_exact_match(contacts, email, phone):
        return IdentifyOutcome.UNCHANGED
    if has_new_information(contacts, email, phone):
        return IdentifyOutcome.CREATE_SECONDARY
    return IdentifyOutcome.UNCHANGED


def merge_primary_contacts(
    conn: sqlite3.Connection, primaries: List[ContactRecord]
) -> ContactRecord:
    """Keep the oldest primary and fold every other one (with its secondaries) under it."""
    if not primaries:
        raise InvariantViolationError("Cannot merge an empty set of primary contacts")

    ordered = sorted(primaries, key=lambda c: c.age_key)
    survivor, demoted = ordered[0], ordered[1:]
    if not demoted:
        return survivor

    demoted_ids = [c.id for c in demoted]
    changed = relink_contacts(conn, survivor.id, demoted_ids)
    logger.info(
        "Merged primary contacts",
        extra={"survivor_id": survivor.id, "demoted_ids": demoted_ids, "rows_updated": changed},
    )
    return survivor


def consolidate_contacts(contacts: List[ContactRecord]) -> ContactResponse:
    primary = find_primary_contact(contacts)
    secondaries = [c for c in contacts if c.id != primary.id]

    emails: List[str] = []
    phone_numbers: List[str] = []
    for contact in [primary] + secondaries:
        if contact.email and contact.email not in emails:
            emails.append(contact.email)
        if contact.phoneNumber and contact.phoneNumber not in phone_numbers:
            phone_numbers.append(contact.phoneNumber)

    return ContactResponse(
        primaryContactId=primary.id,
        emails=emails,
        phoneNumbers=phone_numbers,
        secondaryContactIds=[c.id for c in secondaries],
    )


def reconcile(
    conn: sqlite3.Connection, email: Optional[str], phone: Optional[str]
) -> ContactResponse:
    """Run one identify pass on an open transaction."""
    matched = find_matching_contacts(conn, email, phone)

    if not matched:
        contact = insert_contact(conn, email, phone)
        logger.info("Created primary contact", extra={"contact_id": contact.id})
        return consolidate_contacts([contact])

    group = get_all_linked_contacts(conn, matched)
    outcome = decide(group, email, phone)

    if outcome == IdentifyOutcome.MERGE_PRIMARIES:
        survivor = merge_primary_contacts(conn, primary_contacts(group))
        group = get_all_linked_contacts(conn, [survivor])
    elif outcome == IdentifyOutcome.CREATE_SECONDARY:
        primary = find_primary_contact(group)
        contact = insert_contact(conn, email, phone, primary.id, LinkPrecedence.SECONDARY)
        logger.info(
            "Created secondary contact",
            extra={"contact_id": contact.id, "primary_id": primary.id},
        )
        group = get_all_linked_contacts(conn, [primary])

    return consolidate_contacts(group)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


def identify(email: Optional[str] = None, phone: Optional[str] = None) -> ContactResponse:
    """Reconcile an ``(email, phone)`` observation and return the consolidated contact.

    The whole pass holds the ledger write lock. Lock contention restarts
    the pass from matching, up to ``settings.identify_max_retries``
    attempts; any other store failure propagates immediately.

    Raises:
        InvariantViolationError: The stored groups are inconsistent.
        StoreContentionError: The write lock stayed busy on every attempt.
        StoreUnavailableError: The store could not be opened or queried.
    """
    email = email or None
    phone = phone or None
    attempts = max(1, settings.identify_max_retries)

    for attempt in range(1, attempts + 1):
        try:
            with transaction() as conn:
                return reconcile(conn, email, phone)
        except sqlite3.OperationalError as exc:
            if not _is_lock_error(exc):
                raise StoreUnavailableError(str(exc)) from exc
            logger.warning(
                "Contact store busy, retrying identify",
                extra={"attempt": attempt, "max_attempts": attempts},
            )
        except sqlite3.IntegrityError as exc:
            raise InvariantViolationError(str(exc)) from exc
        except sqlite3.DatabaseError as exc:
            raise StoreUnavailableError(str(exc)) from exc

    raise StoreContentionError(attempts)
