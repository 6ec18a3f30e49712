"""SQLitePatternStore — learned patterns in a local SQLite database.

Why SQLite for shared learning:
- Ships with Python, no extra dependencies.
- ``BEGIN IMMEDIATE`` takes the write lock before the read, so parallel runs
  (several CI jobs, several terminals) serialize their read-modify-write
  cycles and no confidence update is lost.
- One row per user namespace keeps the global store namespaced per local user
  while letting a team share the database file.

Schema:
  learned_state — one JSON document per namespace.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from prtriage_store.base import BasePatternStore, PatternStoreError, default_namespace
from prtriage_store.models import LearnedState, Pattern, utc_now

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS learned_state (
    namespace   TEXT PRIMARY KEY,
    state_json  TEXT NOT NULL DEFAULT '{}',
    updated_at  TEXT
);
"""


class SQLitePatternStore(BasePatternStore):
    """Stores learned patterns in a local SQLite database file.

    The database path defaults to `.prtriage.db` in the current working
    directory. Configure via .prtriage.yml: `store: sqlite`, `store_path: ...`.
    """

    def __init__(
        self,
        db_path: str = ".prtriage.db",
        namespace: str | None = None,
        project_patterns: list[Pattern] | None = None,
        timeout: float = 30.0,
    ):
        super().__init__(project_patterns)
        self._namespace = namespace or default_namespace()
        self._lock = threading.Lock()
        try:
            # Autocommit mode: transactions are opened explicitly below.
            self._conn = sqlite3.connect(db_path, timeout=timeout, isolation_level=None, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.executescript(_SCHEMA)
        except sqlite3.Error as e:
            raise PatternStoreError(f"Could not open pattern database {db_path}: {e}") from e

    @property
    def namespace(self) -> str:
        return self._namespace

    def _read_state(self) -> LearnedState:
        try:
            row = self._conn.execute(
                "SELECT state_json FROM learned_state WHERE namespace=?",
                (self._namespace,),
            ).fetchone()
        except sqlite3.Error as e:
            logger.warning("Could not read learned patterns (%s); using no learned patterns.", e)
            return LearnedState()
        if row is None:
            return LearnedState()
        return self._decode(row["state_json"])

    @contextmanager
    def _transaction(self) -> Iterator[LearnedState]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise PatternStoreError(f"Could not lock pattern database: {e}") from e
            try:
                state = self._read_state()
                yield state
                state.updated_at = utc_now()
                self._conn.execute(
                    """
                    INSERT INTO learned_state (namespace, state_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(namespace) DO UPDATE SET
                        state_json = excluded.state_json,
                        updated_at = excluded.updated_at
                    """,
                    (self._namespace, json.dumps(state.to_dict()), state.updated_at),
                )
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._conn.execute("ROLLBACK")
                raise PatternStoreError(f"Could not write learned patterns: {e}") from e
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    def close(self) -> None:
        self._conn.close()

    def _decode(self, state_json: str | None) -> LearnedState:
        try:
            raw = json.loads(state_json or "{}")
        except json.JSONDecodeError as e:
            logger.warning("Learned state for %s is corrupt (%s); using no learned patterns.", self._namespace, e)
            return LearnedState()
        if not isinstance(raw, dict):
            logger.warning("Learned state for %s has unexpected format; using no learned patterns.", self._namespace)
            return LearnedState()
        try:
            return LearnedState.from_dict(raw)
        except ValueError as e:
            logger.warning("Learned state for %s is malformed (%s); using no learned patterns.", self._namespace, e)
            return LearnedState()
