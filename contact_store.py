"""Queries against the Contact table.

Every function takes an open connection so that a whole identify call can
share one transaction (see ``db_setup.transaction``).
"""

import sqlite3
from typing import Iterable, List, Optional

from db_models import ContactRecord, LinkPrecedence
from db_setup import utc_now


def _to_records(rows) -> List[ContactRecord]:
    return [ContactRecord(**dict(row)) for row in rows]


def _placeholders(values) -> str:
    return ", ".join("?" for _ in values)


def find_matching_contacts(
    conn: sqlite3.Connection,
    email: Optional[str] = None,
    phone: Optional[str] = None,
) -> List[ContactRecord]:
    """Live contacts whose email or phone number equals the given values."""
    conditions = []
    params = []
    if email is not None:
        conditions.append("email = ?")
        params.append(email)
    if phone is not None:
        conditions.append("phoneNumber = ?")
        params.append(phone)
    if not conditions:
        return []

    query = f"""
        SELECT * FROM Contact
        WHERE deletedAt IS NULL
        AND ({" OR ".join(conditions)})
        ORDER BY createdAt ASC, id ASC
    """
    return _to_records(conn.execute(query, params).fetchall())


def find_linked_contacts(
    conn: sqlite3.Connection, primary_ids: Iterable[int]
) -> List[ContactRecord]:
    """Live contacts that are one of ``primary_ids`` or link to one of them."""
    ids = sorted(set(primary_ids))
    if not ids:
        return []

    marks = _placeholders(ids)
    query = f"""
        SELECT * FROM Contact
        WHERE deletedAt IS NULL
        AND (id IN ({marks}) OR linkedId IN ({marks}))
        ORDER BY createdAt ASC, id ASC
    """
    return _to_records(conn.execute(query, ids + ids).fetchall())


def get_contact(conn: sqlite3.Connection, contact_id: int) -> Optional[ContactRecord]:
    row = conn.execute("SELECT * FROM Contact WHERE id = ?", (contact_id,)).fetchone()
    return ContactRecord(**dict(row)) if row else None


def insert_contact(
    conn: sqlite3.Connection,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    linked_id: Optional[int] = None,
    precedence: LinkPrecedence = LinkPrecedence.PRIMARY,
    created_at: Optional[str] = None,
) -> ContactRecord:
    """Insert one contact row and return it as stored."""
    now = utc_now()
    cursor = conn.execute(
        """
        INSERT INTO Contact (phoneNumber, email, linkedId, linkPrecedence, createdAt, updatedAt)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (phone, email, linked_id, LinkPrecedence(precedence).value, created_at or now, now),
    )
    return get_contact(conn, cursor.lastrowid)


def relink_contacts(
    conn: sqlite3.Connection, survivor_id: int, demoted_ids: Iterable[int]
) -> int:
    """Fold the demoted primaries and their secondaries under ``survivor_id``.

    One statement rewrites both the demoted primaries and every secondary
    pointing at them, soft-deleted secondaries included, so no row is left
    linked to a demoted record. Returns the number of rows changed.
    """
    ids = sorted(set(demoted_ids))
    if not ids:
        return 0

    marks = _placeholders(ids)
    cursor = conn.execute(
        f"""
        UPDATE Contact
        SET linkedId = ?, linkPrecedence = 'secondary', updatedAt = ?
        WHERE (id IN ({marks}) AND deletedAt IS NULL)
        OR linkedId IN ({marks})
        """,
        [survivor_id, utc_now()] + ids + ids,
    )
    return cursor.rowcount
