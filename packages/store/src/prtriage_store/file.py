"""JsonFilePatternStore — the learned pattern store as a JSON document on disk.

Default location is ``~/.prtriage/<user>/learned-patterns.json`` so every
local user learns separately.

Writes re-read the file inside the lock before mutating, then replace it
atomically (temp file + ``os.replace``), so a reader never sees a half
written document and updates from other threads are merged rather than
overwritten. For several processes writing the same namespace at once, use
SQLitePatternStore.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from prtriage_store.base import BasePatternStore, PatternStoreError, default_namespace
from prtriage_store.models import LearnedState, Pattern, utc_now

logger = logging.getLogger(__name__)

_FILENAME = "learned-patterns.json"


def default_store_path(user: str | None = None) -> Path:
    return Path.home() / ".prtriage" / (user or default_namespace()) / _FILENAME


class JsonFilePatternStore(BasePatternStore):
    """Stores learned patterns for one user in a local JSON file."""

    def __init__(
        self,
        path: str | os.PathLike | None = None,
        user: str | None = None,
        project_patterns: list[Pattern] | None = None,
    ):
        super().__init__(project_patterns)
        self._path = Path(path) if path else default_store_path(user)
        self._lock = threading.Lock()
        self._corrupt = False

    @property
    def path(self) -> Path:
        return self._path

    def _read_state(self) -> LearnedState:
        if not self._path.exists():
            return LearnedState()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("Learned pattern file %s is unreadable (%s); using no learned patterns.", self._path, e)
            self._corrupt = True
            return LearnedState()
        if not isinstance(raw, dict):
            logger.warning("Learned pattern file %s has unexpected format; using no learned patterns.", self._path)
            self._corrupt = True
            return LearnedState()
        try:
            return LearnedState.from_dict(raw)
        except ValueError as e:
            logger.warning("Learned pattern file %s is malformed (%s); using no learned patterns.", self._path, e)
            self._corrupt = True
            return LearnedState()

    @contextmanager
    def _transaction(self) -> Iterator[LearnedState]:
        with self._lock:
            state = self._read_state()
            yield state
            state.updated_at = utc_now()
            self._write(state)

    def _write(self, state: LearnedState) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            if self._corrupt and self._path.exists():
                backup = self._path.with_name(self._path.name + ".corrupt")
                os.replace(self._path, backup)
                logger.warning("Moved unreadable learned pattern file aside to %s", backup)
            self._corrupt = False

            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".learned-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(state.to_dict(), f, indent=2)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PatternStoreError(f"Could not write learned patterns to {self._path}: {e}") from e
