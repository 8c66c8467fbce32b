"""Clock abstraction so scanning and token expiry can run on synthetic time."""

import time


class SystemClock:
    """Wall clock in integer epoch seconds."""

    def now(self) -> int:
        return int(time.time())


class FrozenClock:
    """Manually driven clock for tests and replays."""

    def __init__(self, start: int):
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        self._now = int(timestamp)

    def advance(self, seconds: int) -> None:
        self._now += int(seconds)
