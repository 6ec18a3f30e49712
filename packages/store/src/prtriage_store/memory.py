"""In-memory pattern store — the default for tests and one-shot runs.

Nothing is persisted. Using a MemoryPatternStore rather than None lets callers
always pass a store handle without conditional checks.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from prtriage_store.base import BasePatternStore
from prtriage_store.models import LearnedState, Pattern, utc_now


class MemoryPatternStore(BasePatternStore):
    """Keeps learned state in process memory behind a lock."""

    def __init__(self, project_patterns: list[Pattern] | None = None, state: LearnedState | None = None):
        super().__init__(project_patterns)
        self._state = state or LearnedState()
        self._lock = threading.Lock()

    def _read_state(self) -> LearnedState:
        with self._lock:
            return copy.deepcopy(self._state)

    @contextmanager
    def _transaction(self) -> Iterator[LearnedState]:
        with self._lock:
            working = copy.deepcopy(self._state)
            yield working
            working.updated_at = utc_now()
            self._state = working
