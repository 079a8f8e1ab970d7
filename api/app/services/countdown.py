from datetime import datetime, timedelta


def deadline(anchor: datetime, duration_seconds: float) -> datetime:
    return anchor + timedelta(seconds=duration_seconds)


def remaining_seconds(anchor: datetime | None, duration_seconds: float, now: datetime) -> int:
    if anchor is None:
        return int(duration_seconds)
    left = (deadline(anchor, duration_seconds) - now).total_seconds()
    return max(0, int(left))


def is_expired(anchor: datetime | None, duration_seconds: float, now: datetime) -> bool:
    if anchor is None:
        return False
    return now >= deadline(anchor, duration_seconds)


def format_countdown(seconds: int) -> str:
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
