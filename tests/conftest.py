"""Shared fixtures: every test gets its own SQLite file under tmp_path."""

import sqlite3

import pytest
from fastapi.testclient import TestClient

from config import Settings
from db_setup import init_db
from main import create_app
from resolver import Resolver


@pytest.fixture
def settings(tmp_path):
    s = Settings(database_path=str(tmp_path / "contacts.db"), busy_timeout_seconds=5.0)
    init_db(s.database_path)
    return s


@pytest.fixture
def resolver(settings):
    return Resolver(settings)


@pytest.fixture
def flat_resolver(settings):
    return Resolver(settings.model_copy(update={"flatten_on_merge": True}))


@pytest.fixture
def client(settings):
    with TestClient(create_app(settings)) as c:
        yield c


@pytest.fixture
def rows(settings):
    """Return the Contact table as a list of dicts, ordered by id."""

    def _rows():
        conn = sqlite3.connect(settings.database_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(r) for r in conn.execute("SELECT * FROM Contact ORDER BY id")]
        finally:
            conn.close()

    return _rows
