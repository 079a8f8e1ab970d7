"""Pacing for concurrent searchers.

Searchers are bucketed into coarse windows so clients that started within the
same window re-evaluate matches together. The bucket only paces evaluation;
the candidate pool is never partitioned by it.
"""

from datetime import datetime, timedelta

from ..config import SYNC_BOUNDARY_STEP_MS, SYNC_BUFFER_MS, SYNC_GROUP_WINDOW_MS


def epoch_ms(now: datetime) -> int:
    return int(now.timestamp() * 1000)


def sync_group(now_ms: int) -> int:
    return now_ms // SYNC_GROUP_WINDOW_MS


def evaluation_delay_ms(group: int, now_ms: int) -> int:
    # The boundary uses a smaller step than the window, so for current clocks the
    # offset is negative and evaluation happens right away.
    return max(0, (group + 1) * SYNC_BOUNDARY_STEP_MS - now_ms + SYNC_BUFFER_MS)


def evaluation_due_at(created_at: datetime, group: int) -> datetime:
    return created_at + timedelta(milliseconds=evaluation_delay_ms(group, epoch_ms(created_at)))
