from datetime import datetime, timezone

from app.services.countdown import format_countdown, is_expired, remaining_seconds
from app.services.sync_groups import epoch_ms, evaluation_delay_ms, evaluation_due_at, sync_group


def test_sync_group_buckets_two_minute_windows():
    assert sync_group(0) == 0
    assert sync_group(119_999) == 0
    assert sync_group(120_000) == 1


def test_evaluation_delay_formula_and_clamp():
    assert evaluation_delay_ms(0, 10_000) == 25_000
    assert evaluation_delay_ms(0, 40_000) == 0
    now = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    group = sync_group(epoch_ms(now))
    assert evaluation_delay_ms(group, epoch_ms(now)) == 0
    assert evaluation_due_at(now, group) == now


def test_users_starting_in_same_window_share_group():
    a = datetime(2026, 3, 2, 12, 0, 5, tzinfo=timezone.utc)
    b = datetime(2026, 3, 2, 12, 1, 50, tzinfo=timezone.utc)
    assert sync_group(epoch_ms(a)) == sync_group(epoch_ms(b))


def test_countdown_is_pure_function_of_anchor():
    anchor = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
    later = datetime(2026, 3, 2, 12, 4, 0, tzinfo=timezone.utc)
    assert remaining_seconds(anchor, 300, later) == 60
    assert not is_expired(anchor, 300, later)
    assert is_expired(anchor, 240, later)
    assert remaining_seconds(anchor, 60, later) == 0
    assert format_countdown(65) == "1:05"
    assert format_countdown(4 * 3600) == "4:00:00"
