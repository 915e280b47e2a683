"""
Progress Cursor
===============
Persisted pointer to the next unprocessed target.

``advance`` writes ``current + 1`` to the store *before* returning, and the
orchestrator only starts on a target after ``advance`` returned.  A crash
mid-target therefore shows up as that target being skipped on the next
run, never as it being repeated.  No rollback.
"""

from __future__ import annotations

import logging

from .errors import CursorPersistenceFailure
from .storage import ArtifactStore

logger = logging.getLogger(__name__)


class ProgressCursor:
    """Single integer cursor over an ``ArtifactStore``."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def read(self) -> int:
        try:
            value = int(self.store.get_cursor())
        except Exception as e:
            raise CursorPersistenceFailure(f"could not read progress cursor: {e}") from e
        if value < 0:
            raise CursorPersistenceFailure(f"progress cursor is negative: {value}")
        logger.info(f"[CURSOR] Read cursor = {value}")
        return value

    def advance(self, current: int) -> int:
        """Persist ``current + 1`` and return it."""
        new_value = current + 1
        try:
            self.store.set_cursor(new_value)
        except Exception as e:
            raise CursorPersistenceFailure(
                f"could not persist progress cursor {new_value}: {e}"
            ) from e
        logger.info(f"[CURSOR] Advanced {current} -> {new_value}")
        return new_value
