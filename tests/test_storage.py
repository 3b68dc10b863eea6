"""
Tests for guardcache.storage module.
"""

import sqlite3
import threading
from pathlib import Path

import pytest

from guardcache.exceptions import ConfigurationError, DatabaseError
from guardcache.storage import SQLiteStore, ensure_directory, translate_errors

SCHEMA = "CREATE TABLE IF NOT EXISTS items (name TEXT NOT NULL);"


@pytest.fixture
def store(tmp_path: Path):
    store = SQLiteStore(tmp_path / "nested" / "store.db", schema=SCHEMA)
    yield store
    store.close()


def test_ensure_directory_creates_parents(tmp_path: Path):
    target = tmp_path / "a" / "b"
    assert ensure_directory(target) == target
    assert target.is_dir()


def test_ensure_directory_rejects_file(tmp_path: Path):
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        ensure_directory(blocker)


def test_transaction_commits(store: SQLiteStore):
    with store.transaction() as conn:
        conn.execute("INSERT INTO items (name) VALUES ('a')")
    assert store.connection().execute("SELECT COUNT(*) FROM items").fetchone()[0] == 1


def test_transaction_rolls_back_on_error(store: SQLiteStore):
    with pytest.raises(RuntimeError):
        with store.transaction() as conn:
            conn.execute("INSERT INTO items (name) VALUES ('a')")
            raise RuntimeError("abort")
    assert store.connection().execute("SELECT COUNT(*) FROM items").fetchone()[0] == 0


def test_connection_is_per_thread(store: SQLiteStore):
    main = store.connection()
    seen = []
    worker = threading.Thread(target=lambda: seen.append(store.connection()))
    worker.start()
    worker.join()

    assert store.connection() is main
    assert seen[0] is not main


def test_translate_errors(tmp_path: Path):
    with pytest.raises(DatabaseError) as exc_info:
        with translate_errors("select", table="items", path=tmp_path / "x.db"):
            raise sqlite3.OperationalError("no such table: items")

    assert exc_info.value.operation == "select"
    assert exc_info.value.table == "items"
    assert isinstance(exc_info.value.__cause__, sqlite3.OperationalError)


def test_close_closes_every_connection(store: SQLiteStore):
    conn = store.connection()
    store.close()
    with pytest.raises(sqlite3.ProgrammingError):
        conn.execute("SELECT 1")
    # A fresh connection is opened on next use
    assert store.connection().execute("SELECT 1").fetchone() == (1,)
