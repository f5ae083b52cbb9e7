"""Wall-clock source shared by the challenge store and the session manager.

Components take a ``Clock`` so tests can move time without sleeping.
"""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class FrozenClock:
    """A manually advanced clock.

    Usage:
        clock = FrozenClock()
        store = InMemoryChallengeStore(clock=clock)
        clock.advance(minutes=6)
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or utcnow()

    def __call__(self) -> datetime:
        return self._now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        """Move the clock forward by ``delta`` or by timedelta keyword arguments."""
        self._now = self._now + (delta if delta is not None else timedelta(**kwargs))
        return self._now
