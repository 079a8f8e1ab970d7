from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.exc import OperationalError

from ..config import (
    ELIMINATION_JOB_INTERVAL_SECONDS,
    ELIMINATION_JOB_RETRIES,
    JOB_RETRY_DELAY_SECONDS,
    REQUEST_JOB_INTERVAL_SECONDS,
    ROTATION_JOB_INTERVAL_SECONDS,
    ROTATION_JOB_RETRIES,
)
from ..store import DocumentStore, StoreError
from .elimination import run_elimination_job
from .lineup_rotation import process_rotation_requests, run_rotation_job

logger = logging.getLogger(__name__)

RETRYABLE = (StoreError, OperationalError)


def run_with_retries(
    fn: Callable[[], Any],
    *,
    retries: int,
    delay_seconds: float = JOB_RETRY_DELAY_SECONDS,
    label: str = "job",
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    last_err: Exception | None = None
    for attempt in range(retries + 1):
        try:
            return fn()
        except RETRYABLE as exc:
            last_err = exc
            logger.warning("[JOBS] %s failed (attempt %s/%s): %s", label, attempt + 1, retries + 1, exc)
            if attempt < retries:
                sleep(delay_seconds)
    if last_err:
        raise last_err
    return None


@dataclass
class PeriodicJob:
    name: str
    interval_seconds: float
    fn: Callable[[], Any]
    retries: int = 0
    stop_event: threading.Event = field(default_factory=threading.Event)

    def run_once(self) -> Any:
        return run_with_retries(self.fn, retries=self.retries, label=self.name)

    def run_forever(self) -> None:
        logger.info("[JOBS] %s every %ss", self.name, self.interval_seconds)
        while not self.stop_event.is_set():
            started = time.monotonic()
            try:
                self.run_once()
            except RETRYABLE:
                logger.exception("[JOBS] %s gave up until next interval", self.name)
            elapsed = time.monotonic() - started
            self.stop_event.wait(max(0.0, self.interval_seconds - elapsed))

    def stop(self) -> None:
        self.stop_event.set()


def lineup_jobs(store: DocumentStore) -> dict[str, PeriodicJob]:
    return {
        "rotation": PeriodicJob("rotation", ROTATION_JOB_INTERVAL_SECONDS, lambda: run_rotation_job(store), ROTATION_JOB_RETRIES),
        "requests": PeriodicJob("requests", REQUEST_JOB_INTERVAL_SECONDS, lambda: process_rotation_requests(store)),
        "elimination": PeriodicJob(
            "elimination", ELIMINATION_JOB_INTERVAL_SECONDS, lambda: run_elimination_job(store), ELIMINATION_JOB_RETRIES
        ),
    }
