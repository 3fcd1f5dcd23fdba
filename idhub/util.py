"""Time helpers shared by the token codec and the services."""

from datetime import datetime

from pytz import UTC


def now() -> int:
    """Get the current epoch/unix time."""
    return epoch(datetime.now(tz=UTC))


def epoch(t: datetime) -> int:
    """Convert a :class:`.datetime` to UNIX time."""
    if t.tzinfo is None:
        t = UTC.localize(t)
    delta = t - datetime.fromtimestamp(0, tz=UTC)
    return int(round(delta.total_seconds()))
