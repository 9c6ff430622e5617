"""Clock abstraction so polling can run against virtual time in tests."""

import asyncio
import time
from typing import Protocol


class Clock(Protocol):
    """Source of monotonic time and non-blocking sleep."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class MonotonicClock:
    """Real clock backed by time.monotonic and asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class VirtualClock:
    """Clock whose sleeps complete without real elapsed time.

    Sleepers wake in deadline order: the sleeper with the earliest deadline
    moves virtual time forward to its deadline once the event loop has settled
    for a few iterations. Concurrent pollers sharing one instance therefore
    observe a consistent timeline.
    """

    SETTLE_ROUNDS = 10

    def __init__(self, start: float = 0.0):
        self._now = start
        self._deadlines: list[float] = []
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        seconds = max(0.0, seconds)
        self.sleeps.append(seconds)
        deadline = self._now + seconds
        self._deadlines.append(deadline)
        try:
            rounds = 0
            while deadline > self._now:
                await asyncio.sleep(0)
                if deadline == min(self._deadlines):
                    rounds += 1
                    if rounds >= self.SETTLE_ROUNDS:
                        self._now = deadline
                else:
                    rounds = 0
            await asyncio.sleep(0)
        finally:
            self._deadlines.remove(deadline)

    def advance(self, seconds: float) -> None:
        self._now += seconds
