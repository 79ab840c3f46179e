"""
EchoKey Time Handling

Timestamps are timezone-aware UTC datetimes truncated to millisecond
precision. Their wire form, which is also the HMAC input, is ISO-8601
with three fractional digits and a "Z" suffix:

    2025-01-01T00:00:00.000Z

The Clock abstraction gives the refresh scheduler a single scheduled-wakeup
primitive (sleep). ManualClock implements it over virtual time so tests can
advance the clock deterministically instead of sleeping.
"""

import asyncio
import heapq
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Tuple, Union


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def truncate_ms(dt: datetime) -> datetime:
    """Drop sub-millisecond precision so a timestamp survives its wire form."""
    dt = ensure_utc(dt)
    return dt.replace(microsecond=(dt.microsecond // 1000) * 1000)


def format_timestamp(dt: datetime) -> str:
    """Render a datetime as ISO-8601 UTC with milliseconds and a Z suffix."""
    dt = ensure_utc(dt)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f"{dt.microsecond // 1000:03d}Z"


def parse_timestamp(value: Union[str, datetime]) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts a trailing "Z" or an explicit offset. Naive values are taken
    as UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp, or its
            UTC equivalent falls outside the datetime range
    """
    if isinstance(value, datetime):
        return ensure_utc(value)
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid timestamp: {value!r}")
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return ensure_utc(datetime.fromisoformat(text))
    except OverflowError as e:
        # Offsets that push a date past year 1 or 9999
        raise ValueError(f"Timestamp out of range: {value!r}") from e


def seconds_between(start: datetime, end: datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()


class Clock(ABC):
    """Source of the current time and of scheduled wakeups."""

    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        pass

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task until `seconds` have elapsed on this clock."""
        pass


class SystemClock(Clock):
    """Wall clock backed by the running event loop."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """
    Virtual clock for deterministic tests.

    Time only moves when advance() is awaited. Sleepers are woken in
    deadline order, with now() stepped to each deadline before the sleeper
    runs, so a task that sleeps again inside the advanced span is woken
    again within the same advance() call.
    """

    # Event loop turns granted to each woken sleeper before the next deadline
    YIELDS_PER_WAKEUP = 5

    def __init__(self, start: datetime):
        self._now = ensure_utc(start)
        self._waiters: List[Tuple[datetime, int, asyncio.Future]] = []
        self._seq = 0

    def now(self) -> datetime:
        return self._now

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._waiters if not fut.done())

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._waiters, (self._now + timedelta(seconds=seconds), self._seq, fut))
        await fut

    async def advance(self, seconds: float) -> None:
        """Move virtual time forward, waking every sleeper whose deadline passes."""
        target = self._now + timedelta(seconds=seconds)
        # Let freshly started tasks reach their first sleep before time moves
        for _ in range(self.YIELDS_PER_WAKEUP):
            await asyncio.sleep(0)
        while self._waiters and self._waiters[0][0] <= target:
            deadline, _, fut = heapq.heappop(self._waiters)
            if fut.done():
                continue
            self._now = max(self._now, deadline)
            fut.set_result(None)
            for _ in range(self.YIELDS_PER_WAKEUP):
                await asyncio.sleep(0)
        self._now = target
