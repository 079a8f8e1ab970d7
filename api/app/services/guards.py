from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator

from ..config import (
    LOCK_MODE_CHANGE_GUARD_SECONDS,
    MODE_SELECTION_GUARD_SECONDS,
    SESSION_CHECK_GUARD_SECONDS,
)

logger = logging.getLogger(__name__)


class GuardBusy(Exception):
    pass


@dataclass
class GuardFlag:
    """Re-entrancy flag that releases itself after ``timeout_seconds``."""

    name: str
    timeout_seconds: float
    held_since: datetime | None = None

    def is_held(self, now: datetime) -> bool:
        if self.held_since is None:
            return False
        if now - self.held_since >= timedelta(seconds=self.timeout_seconds):
            logger.warning("[GUARD] %s released by safety timeout", self.name)
            self.held_since = None
            return False
        return True

    def acquire(self, now: datetime) -> bool:
        if self.is_held(now):
            return False
        self.held_since = now
        return True

    def release(self) -> None:
        self.held_since = None

    @contextmanager
    def hold(self, now: datetime) -> Iterator["GuardFlag"]:
        if not self.acquire(now):
            raise GuardBusy(self.name)
        try:
            yield self
        finally:
            self.release()


def mode_selection_guard() -> GuardFlag:
    return GuardFlag("modeSelectionInProgress", MODE_SELECTION_GUARD_SECONDS)


def session_check_guard() -> GuardFlag:
    return GuardFlag("sessionCheckInProgress", SESSION_CHECK_GUARD_SECONDS)


def lock_mode_change_guard() -> GuardFlag:
    return GuardFlag("lockModeChange", LOCK_MODE_CHANGE_GUARD_SECONDS)
