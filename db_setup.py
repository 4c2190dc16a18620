import logging
import sqlite3
from contextlib import contextmanager

from errors import ConflictRetry, StorageError

logger = logging.getLogger(__name__)

DB_NAME = "contacts.db"

_LOCK_MESSAGES = ("database is locked", "database is busy", "database table is locked")


def init_db(path: str = DB_NAME):
    try:
        conn = sqlite3.connect(path)
        cursor = conn.cursor()

        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS Contact (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                phoneNumber TEXT,
                email TEXT,
                linkedId INTEGER,
                linkPrecedence TEXT CHECK(linkPrecedence IN ('secondary', 'primary')),
                createdAt DATETIME DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
                updatedAt DATETIME DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now')),
                deletedAt DATETIME,
                FOREIGN KEY (linkedId) REFERENCES Contact (id)
            )
        ''')
        cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_email ON Contact (email)")
        cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_phone ON Contact (phoneNumber)")
        cursor.execute("CREATE INDEX IF NOT EXISTS ix_contact_linked ON Contact (linkedId)")
        conn.commit()
        conn.close()
    except sqlite3.Error as e:
        raise StorageError(f"could not initialise {path}: {e}") from e
    logger.info("Contact store ready at %s", path)


def get_db_connection(path: str = DB_NAME, timeout: float = 5.0):
    # autocommit mode: transactions are opened explicitly by transaction()
    conn = sqlite3.connect(path, timeout=timeout, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def _is_lock_error(error: sqlite3.Error) -> bool:
    return isinstance(error, sqlite3.OperationalError) and any(
        msg in str(error).lower() for msg in _LOCK_MESSAGES
    )


@contextmanager
def transaction(path: str = DB_NAME, timeout: float = 5.0):
    """Yield a connection holding the database write lock until commit.

    BEGIN IMMEDIATE takes the RESERVED lock before the first read, so no other
    writer can interleave between what we read and what we write.
    """
    try:
        conn = get_db_connection(path, timeout)
    except sqlite3.Error as e:
        raise StorageError(f"could not open {path}: {e}") from e

    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except sqlite3.Error as e:
        _rollback(conn)
        if _is_lock_error(e):
            raise ConflictRetry(str(e)) from e
        raise StorageError(str(e)) from e
    except BaseException:
        _rollback(conn)
        raise
    finally:
        conn.close()


def _rollback(conn):
    if conn.in_transaction:
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error:
            logger.exception("Rollback failed")
