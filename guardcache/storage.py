"""
Shared SQLite store lifecycle for the rate limiter and the database cache.

Each store is a single database file. Every thread gets its own connection;
WAL mode lets readers proceed while one writer holds the lock, and the busy
timeout bounds how long a blocked writer waits before SQLite raises.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from guardcache.exceptions import ConfigurationError, DatabaseError
from guardcache.logging_config import get_logger

logger = get_logger(__name__)

DIRECTORY_MODE = 0o755


def ensure_directory(directory: Path) -> Path:
    """
    Create `directory` (and parents) if it does not exist.

    Raises:
        ConfigurationError: If the directory cannot be created.
    """
    directory = Path(directory)
    try:
        directory.mkdir(mode=DIRECTORY_MODE, parents=True, exist_ok=True)
    except OSError as exc:
        raise ConfigurationError(
            f"Unable to create directory: {directory}",
            setting_name=str(directory),
        ) from exc
    if not directory.is_dir():
        raise ConfigurationError(f"Not a directory: {directory}", setting_name=str(directory))
    return directory


@contextmanager
def translate_errors(operation: str, *, table: str | None = None, path: Path | None = None) -> Iterator[None]:
    """Re-raise sqlite3 errors from the wrapped block as DatabaseError."""
    try:
        yield
    except sqlite3.Error as exc:
        raise DatabaseError(
            f"SQLite error during {operation}: {exc}",
            operation=operation,
            table=table,
            path=str(path) if path else None,
        ) from exc


class SQLiteStore:
    """
    A single-file SQLite database with thread-local connections.

    Connections run in autocommit mode; multi-statement atomicity is obtained
    through `transaction()`, which issues `BEGIN IMMEDIATE` so the write lock
    is taken before any read inside the block.

    Example:
        store = SQLiteStore(Path("storage/app.db"), schema="CREATE TABLE IF NOT EXISTS ...")
        with store.transaction() as conn:
            conn.execute("UPDATE ...")
    """

    def __init__(
        self,
        path: Path,
        *,
        schema: str = "",
        busy_timeout_seconds: float = 10.0,
        journal_mode: str = "WAL",
        synchronous: str = "NORMAL",
    ):
        """
        Prepare the store: create the parent directory, open a connection and
        apply the schema.

        Raises:
            ConfigurationError: If the parent directory cannot be created.
            DatabaseError: If the database cannot be opened or the schema fails.
        """
        self.path = Path(path)
        self.busy_timeout_seconds = busy_timeout_seconds
        self.journal_mode = journal_mode
        self.synchronous = synchronous
        self._local = threading.local()
        self._lock = threading.Lock()
        self._connections: list[sqlite3.Connection] = []

        ensure_directory(self.path.parent)
        with translate_errors("open", path=self.path):
            conn = self.connection()
            if schema:
                conn.executescript(schema)

    def connection(self) -> sqlite3.Connection:
        """Get the calling thread's connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_seconds,
                check_same_thread=False,
                isolation_level=None,
            )
            try:
                conn.execute(f"PRAGMA journal_mode={self.journal_mode}")
                conn.execute(f"PRAGMA synchronous={self.synchronous}")
                conn.execute(f"PRAGMA busy_timeout={int(self.busy_timeout_seconds * 1000)}")
            except sqlite3.Error:
                conn.close()
                raise
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the block in a single write transaction, rolling back on error."""
        conn = self.connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            try:
                conn.close()
            except sqlite3.ProgrammingError:
                logger.debug("Connection already closed", extra={"db_path": str(self.path)})
        self._local = threading.local()
