from __future__ import annotations

from datetime import datetime, timezone


def utc_now_iso(seconds: bool = False) -> str:
    """
    Current UTC time in ISO-8601 with a ``Z`` suffix.
    Millisecond precision by default; layout snapshots are stamped this way.
    """
    timespec = "seconds" if seconds else "milliseconds"
    return datetime.now(timezone.utc).isoformat(timespec=timespec).replace("+00:00", "Z")


def epoch_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)
