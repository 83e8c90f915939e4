import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from settings import settings


def init_db(db_name: Optional[str] = None):
    conn = get_db_connection(db_name)
    cursor = conn.cursor()

    cursor.execute('''
        CREATE TABLE IF NOT EXISTS Contact (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            phoneNumber TEXT,
            email TEXT,
            linkedId INTEGER,
            linkPrecedence TEXT NOT NULL CHECK(linkPrecedence IN ('secondary', 'primary')),
            createdAt TEXT NOT NULL,
            updatedAt TEXT NOT NULL,
            deletedAt TEXT,
            FOREIGN KEY (linkedId) REFERENCES Contact (id),
            CHECK ((linkPrecedence = 'primary' AND linkedId IS NULL)
                OR (linkPrecedence = 'secondary' AND linkedId IS NOT NULL))
        )
    ''')
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)")
    cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)")

    conn.close()


def get_db_connection(db_name: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the contact ledger.

    The connection runs in autocommit mode; writes are grouped explicitly
    with :func:`transaction`.
    """
    conn = sqlite3.connect(
        db_name or settings.database_path,
        timeout=settings.database_timeout_seconds,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(db_name: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Hold the ledger write lock for the duration of the block.

    ``BEGIN IMMEDIATE`` takes SQLite's reserved lock before the first read,
    so concurrent identify calls are serialized and a multi-row update is
    never visible half-applied. Commits on success, rolls back on error.

    Example:
        with transaction() as conn:
            conn.execute("UPDATE Contact SET ...")
    """
    conn = get_db_connection(db_name)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def utc_now() -> str:
    # Fixed-width so that string order matches time order
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")
