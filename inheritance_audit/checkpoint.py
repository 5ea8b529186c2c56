#!/usr/bin/env python3
"""
Durable checkpoint store for the audit.

A SQLite-backed FIFO queue of pending folders plus a small key/value table
holding the rest of the audit state (active flag, root label, report
partition). The queue survives process restarts, so an audit can pause at
a deadline and resume in a later invocation.

Every write commits before returning; the next read always sees it.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, List, NamedTuple, Optional

from .errors import CorruptEntry
from .permissions import PermissionSet

logger = logging.getLogger(__name__)

DB_FILENAME = "audit_state.db"


class QueueEntry(NamedTuple):
    node_id: str
    path: str
    url: str
    inherited: PermissionSet
    is_root: bool = False


def _decode_row(row) -> QueueEntry:
    _position, node_id, path, url, inherited, is_root = row
    if not node_id:
        raise CorruptEntry(f"Queue entry for '{path}' has no item id")
    if is_root not in (0, 1):
        raise CorruptEntry(f"Queue entry for '{path}' has invalid root flag {is_root!r}")
    try:
        permission_set = PermissionSet.from_json(inherited)
    except CorruptEntry as e:
        raise CorruptEntry(f"Queue entry for '{path}': {e}") from e
    return QueueEntry(node_id, path or "", url or "", permission_set, bool(is_root))


def _encode(entry: QueueEntry):
    return (entry.node_id, entry.path, entry.url, entry.inherited.to_json(), int(entry.is_root))


class CheckpointStore:
    """
    FIFO queue of QueueEntry values persisted in SQLite.

    Entries are ordered by insertion position; each entry carries its
    parent's PermissionSet as self-contained JSON.
    """

    def __init__(self, state_dir: str):
        self.state_dir = state_dir
        self.db_path = os.path.join(state_dir, DB_FILENAME)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        os.makedirs(self.state_dir, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        try:
            with conn:  # commit on success, rollback on error
                yield conn
        finally:
            conn.close()

    def exists(self) -> bool:
        return os.path.exists(self.db_path)

    def initialize(self) -> None:
        """Discard any previous audit state and create an empty queue."""
        with self._connect() as conn:
            conn.execute("DROP TABLE IF EXISTS queue")
            conn.execute("DROP TABLE IF EXISTS audit_state")
            conn.execute("""
                CREATE TABLE queue (
                    position INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    path TEXT,
                    url TEXT,
                    inherited TEXT,
                    is_root INTEGER
                )
            """)
            conn.execute("CREATE TABLE audit_state (key TEXT PRIMARY KEY, value TEXT)")
        logger.debug(f"Checkpoint store initialized at {self.db_path}")

    def clear(self) -> None:
        """Delete all persisted state."""
        if self.exists():
            os.remove(self.db_path)
            logger.info("Audit state cleared.")

    # --- queue -----------------------------------------------------------

    def enqueue(self, entry: QueueEntry) -> None:
        self.enqueue_batch([entry])

    def enqueue_batch(self, entries: List[QueueEntry]) -> None:
        """Append entries to the tail; either all of them are stored or none."""
        if not entries:
            return
        with self._connect() as conn:
            conn.executemany(
                "INSERT INTO queue (id, path, url, inherited, is_root) VALUES (?, ?, ?, ?, ?)",
                [_encode(entry) for entry in entries],
            )

    def _front(self, conn: sqlite3.Connection):
        return conn.execute(
            "SELECT position, id, path, url, inherited, is_root FROM queue ORDER BY position LIMIT 1"
        ).fetchone()

    def peek_front(self) -> Optional[QueueEntry]:
        """
        Read the oldest pending entry without removing it.

        Raises:
            CorruptEntry: if the stored payload cannot be decoded
        """
        with self._connect() as conn:
            row = self._front(conn)
        if row is None:
            return None
        return _decode_row(row)

    def pop_front(self) -> Optional[QueueEntry]:
        """
        Remove and return the oldest pending entry.

        The row is removed even when it cannot be decoded; corrupt entries
        are dropped for good.

        Raises:
            CorruptEntry: if the stored payload cannot be decoded
        """
        with self._connect() as conn:
            row = self._front(conn)
            if row is None:
                return None
            conn.execute("DELETE FROM queue WHERE position = ?", (row[0],))
        return _decode_row(row)

    def discard_front(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM queue WHERE position = (SELECT MIN(position) FROM queue)")

    def advance(self, children: List[QueueEntry]) -> None:
        """
        Remove the front entry and append its child containers in one
        transaction, so a crash never loses a folder's children.
        """
        with self._connect() as conn:
            conn.execute("DELETE FROM queue WHERE position = (SELECT MIN(position) FROM queue)")
            if children:
                conn.executemany(
                    "INSERT INTO queue (id, path, url, inherited, is_root) VALUES (?, ?, ?, ?, ?)",
                    [_encode(entry) for entry in children],
                )

    def is_empty(self) -> bool:
        return len(self) == 0

    def __len__(self) -> int:
        if not self.exists():
            return 0
        with self._connect() as conn:
            try:
                return conn.execute("SELECT COUNT(*) FROM queue").fetchone()[0]
            except sqlite3.OperationalError:
                return 0

    # --- audit state -----------------------------------------------------

    def set_value(self, key: str, value: str) -> None:
        with self._connect() as conn:
            conn.execute("INSERT OR REPLACE INTO audit_state (key, value) VALUES (?, ?)", (key, value))

    def get_value(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if not self.exists():
            return default
        with self._connect() as conn:
            try:
                row = conn.execute("SELECT value FROM audit_state WHERE key = ?", (key,)).fetchone()
            except sqlite3.OperationalError:
                return default
        return row[0] if row else default

    def is_active(self) -> bool:
        return self.get_value("active") == "1"
