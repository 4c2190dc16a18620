"""ContactStore and transaction boundary against a real SQLite file."""

import sqlite3
from datetime import datetime, timezone

import pytest

from contact_store import ContactStore
from db_models import LinkPrecedence
from db_setup import init_db, transaction
from errors import StorageError


def test_create_primary_and_secondary(settings) -> None:
    with transaction(settings.database_path) as conn:
        store = ContactStore(conn)
        primary = store.create("a@x.com", None)
        alias = store.create(None, "+111", LinkPrecedence.SECONDARY, primary.id)

    assert primary.is_primary
    assert primary.linkedId is None
    assert alias.linkPrecedence == LinkPrecedence.SECONDARY
    assert alias.governing_id == primary.id
    assert alias.id > primary.id


def test_create_rejects_contact_without_identifiers(settings) -> None:
    with pytest.raises(StorageError):
        with transaction(settings.database_path) as conn:
            ContactStore(conn).create(None, None)


def test_create_rejects_secondary_without_link(settings) -> None:
    with pytest.raises(StorageError):
        with transaction(settings.database_path) as conn:
            ContactStore(conn).create("a@x.com", None, LinkPrecedence.SECONDARY)


def test_find_many_without_filters_matches_nothing(settings) -> None:
    with transaction(settings.database_path) as conn:
        store = ContactStore(conn)
        store.create("a@x.com", None)
        assert store.find_many() == []
        assert store.find_first() is None


def test_find_many_ors_clauses_and_orders_by_created_then_id(settings) -> None:
    with transaction(settings.database_path) as conn:
        store = ContactStore(conn)
        a = store.create("a@x.com", None)
        b = store.create(None, "+222")
        store.create("c@x.com", None)
        conn.execute("UPDATE Contact SET createdAt = ? WHERE id IN (?, ?)", ("2020-01-01T00:00:00", a.id, b.id))

        found = store.find_many(email="a@x.com", phone_number="+222")
        assert [c.id for c in found] == [a.id, b.id]


def test_update_only_allows_link_fields(settings) -> None:
    with transaction(settings.database_path) as conn:
        store = ContactStore(conn)
        older = store.create("a@x.com", None)
        newer = store.create("b@x.com", None)
        demoted = store.update(newer.id, linkPrecedence=LinkPrecedence.SECONDARY, linkedId=older.id)
        assert demoted.linkPrecedence == LinkPrecedence.SECONDARY
        assert demoted.linkedId == older.id
        assert demoted.updatedAt >= newer.updatedAt

        with pytest.raises(StorageError):
            store.update(older.id, email="other@x.com")


def test_update_missing_contact(settings) -> None:
    with pytest.raises(StorageError):
        with transaction(settings.database_path) as conn:
            ContactStore(conn).update(999, linkedId=None)


def test_transaction_rolls_back_on_error(settings, rows) -> None:
    with pytest.raises(RuntimeError):
        with transaction(settings.database_path) as conn:
            ContactStore(conn).create("a@x.com", None)
            raise RuntimeError("boom")
    assert rows() == []


def test_transaction_wraps_sqlite_errors(settings) -> None:
    with pytest.raises(StorageError):
        with transaction(settings.database_path) as conn:
            conn.execute("SELECT * FROM NoSuchTable")


def test_init_db_is_idempotent(settings, rows) -> None:
    with transaction(settings.database_path) as conn:
        ContactStore(conn).create("a@x.com", None)
    init_db(settings.database_path)
    assert len(rows()) == 1


def test_init_db_unwritable_path(tmp_path) -> None:
    with pytest.raises(StorageError):
        init_db(str(tmp_path / "missing" / "contacts.db"))


def test_loaded_timestamps_are_utc(settings) -> None:
    conn = sqlite3.connect(settings.database_path)
    conn.execute("INSERT INTO Contact (email, linkPrecedence) VALUES ('default@x.com', 'primary')")
    conn.execute(
        "INSERT INTO Contact (email, linkPrecedence, createdAt, updatedAt) "
        "VALUES ('naive@x.com', 'primary', '2024-01-01 10:00:00', '2024-01-01T10:00:00')"
    )
    conn.commit()
    conn.close()

    with transaction(settings.database_path) as conn:
        store = ContactStore(conn)
        fresh = store.create("new@x.com", None)
        contacts = store.find_many(email="default@x.com") + store.find_many(email="naive@x.com") + [fresh]

    for contact in contacts:
        assert contact.createdAt.tzinfo == timezone.utc
        assert contact.updatedAt.tzinfo == timezone.utc
    naive = contacts[1]
    assert naive.createdAt == datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_find_many_orders_across_timestamp_formats(settings) -> None:
    conn = sqlite3.connect(settings.database_path)
    conn.execute(
        "INSERT INTO Contact (email, linkPrecedence, createdAt, updatedAt) "
        "VALUES ('x@x.com', 'primary', '2024-01-01 12:00:00', '2024-01-01 12:00:00')"
    )
    conn.execute(
        "INSERT INTO Contact (email, linkPrecedence, createdAt, updatedAt) "
        "VALUES ('x@x.com', 'primary', '2024-01-01T09:00:00+00:00', '2024-01-01T09:00:00+00:00')"
    )
    conn.commit()
    conn.close()

    with transaction(settings.database_path) as conn:
        found = ContactStore(conn).find_many(email="x@x.com")
    assert [c.id for c in found] == [2, 1]
