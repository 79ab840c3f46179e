"""
EchoKey Refresh Scheduler

Keeps a signal alive while an external confirmation is pending. Every
interval the scheduler looks at the live signal of its transaction:

    no signal                     -> STOPPED_NO_SIGNAL
    time left <= 0                -> STOPPED_EXPIRED
    0 < time left < threshold     -> reissue through the Signal Store
    otherwise                     -> nothing to do

stop() moves the scheduler to STOPPED_CANCELLED from any state and is
idempotent. A renewal already in flight when stop() is called may still
complete; the signal it writes is simply never refreshed again.

A failed renewal (crypto or store error) is logged and retried on the next
tick. It never stops the scheduler.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from .clock import Clock, SystemClock
from .errors import EchoKeyError
from .models import Signal
from .store import SignalStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SECONDS = 5.0
DEFAULT_THRESHOLD_SECONDS = 10.0


class RefreshState(str, Enum):
    ACTIVE = "ACTIVE"
    STOPPED_EXPIRED = "STOPPED_EXPIRED"
    STOPPED_NO_SIGNAL = "STOPPED_NO_SIGNAL"
    STOPPED_CANCELLED = "STOPPED_CANCELLED"


class RefreshScheduler:
    """
    Per-transaction keep-alive task.

    Usage:
        scheduler = RefreshScheduler(store, tx_id, "ETH").start()
        ...
        scheduler.stop()

    Tests can drive tick() directly, or run the loop on a ManualClock and
    advance virtual time.
    """

    def __init__(
        self,
        store: SignalStore,
        transaction_id: str,
        network_id: str,
        clock: Optional[Clock] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        threshold_seconds: float = DEFAULT_THRESHOLD_SECONDS,
        on_renewed: Optional[Callable[["RefreshScheduler", Signal], None]] = None,
        on_stopped: Optional[Callable[["RefreshScheduler"], None]] = None
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.store = store
        self.transaction_id = transaction_id
        self.network_id = network_id
        self.clock = clock or store.clock or SystemClock()
        self.interval_seconds = interval_seconds
        self.threshold_seconds = threshold_seconds
        self.renewals = 0
        self.failures = 0
        self.stopped_at: Optional[datetime] = None
        self._on_renewed = on_renewed
        self._on_stopped = on_stopped
        self._state = RefreshState.ACTIVE
        self._task: Optional[asyncio.Task] = None

    @property
    def state(self) -> RefreshState:
        return self._state

    @property
    def active(self) -> bool:
        return self._state == RefreshState.ACTIVE

    def _finish(self, state: RefreshState) -> None:
        if not self.active:
            return
        self._state = state
        self.stopped_at = self.clock.now()
        logger.info("Signal refresh for %s stopped: %s", self.transaction_id, state.value)
        if self._on_stopped is not None:
            self._on_stopped(self)

    async def tick(self) -> RefreshState:
        """Run one polling step and return the resulting state."""
        if not self.active:
            return self._state

        try:
            signal = await self.store.get(self.transaction_id)
        except EchoKeyError as e:
            self.failures += 1
            logger.warning("Signal lookup for %s failed, retrying next tick: %s", self.transaction_id, e)
            return self._state

        if not self.active:
            return self._state

        if signal is None:
            self._finish(RefreshState.STOPPED_NO_SIGNAL)
            return self._state

        now = self.clock.now()
        time_left = signal.time_left(now)
        if time_left <= 0:
            self._finish(RefreshState.STOPPED_EXPIRED)
        elif time_left < self.threshold_seconds:
            try:
                renewed = await self.store.issue(self.transaction_id, self.network_id, now=now)
            except EchoKeyError as e:
                self.failures += 1
                logger.warning("Signal refresh for %s failed, retrying next tick: %s", self.transaction_id, e)
                return self._state
            self.renewals += 1
            logger.info(
                "Signal auto-refreshed for %s (%.1fs left, now expires %s)",
                self.transaction_id, time_left, renewed.expires_at_iso,
            )
            if self.active and self._on_renewed is not None:
                self._on_renewed(self, renewed)
        return self._state

    async def run(self) -> RefreshState:
        """Poll until a terminal state is reached or the task is cancelled."""
        try:
            while self.active:
                await self.clock.sleep(self.interval_seconds)
                if not self.active:
                    break
                await self.tick()
        except asyncio.CancelledError:
            self._finish(RefreshState.STOPPED_CANCELLED)
            raise
        return self._state

    def start(self) -> "RefreshScheduler":
        """Schedule run() on the running event loop and return self as the handle."""
        if self._task is None and self.active:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self

    def stop(self) -> None:
        """Cancel the scheduler. Safe to call repeatedly and from any state."""
        self._finish(RefreshState.STOPPED_CANCELLED)
        task = self._task
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

    async def wait(self) -> RefreshState:
        """Wait for the background task to finish."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        return self._state

    def __repr__(self) -> str:
        return f"RefreshScheduler({self.transaction_id!r}, state={self._state.value})"


class RefreshRegistry:
    """At most one running RefreshScheduler per transaction id."""

    def __init__(
        self,
        store: SignalStore,
        clock: Optional[Clock] = None,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        threshold_seconds: float = DEFAULT_THRESHOLD_SECONDS,
        on_renewed: Optional[Callable[[RefreshScheduler, Signal], None]] = None,
        on_stopped: Optional[Callable[[RefreshScheduler], None]] = None
    ):
        self.store = store
        self.clock = clock or store.clock
        self.interval_seconds = interval_seconds
        self.threshold_seconds = threshold_seconds
        self._on_renewed = on_renewed
        self._on_stopped = on_stopped
        self._schedulers: Dict[str, RefreshScheduler] = {}

    def _stopped(self, scheduler: RefreshScheduler) -> None:
        if self._schedulers.get(scheduler.transaction_id) is scheduler:
            del self._schedulers[scheduler.transaction_id]
        if self._on_stopped is not None:
            self._on_stopped(scheduler)

    def start(self, transaction_id: str, network_id: str) -> RefreshScheduler:
        """Start keeping a transaction's signal alive, replacing any running scheduler."""
        self.stop(transaction_id)
        scheduler = RefreshScheduler(
            self.store,
            transaction_id,
            network_id,
            clock=self.clock,
            interval_seconds=self.interval_seconds,
            threshold_seconds=self.threshold_seconds,
            on_renewed=self._on_renewed,
            on_stopped=self._stopped,
        )
        self._schedulers[transaction_id] = scheduler
        return scheduler.start()

    def get(self, transaction_id: str) -> Optional[RefreshScheduler]:
        return self._schedulers.get(transaction_id)

    def stop(self, transaction_id: str) -> bool:
        """Stop the scheduler of a transaction. Returns False if none was running."""
        scheduler = self._schedulers.get(transaction_id)
        if scheduler is None:
            return False
        scheduler.stop()
        return True

    def stop_all(self) -> int:
        schedulers = list(self._schedulers.values())
        for scheduler in schedulers:
            scheduler.stop()
        return len(schedulers)

    def active_ids(self) -> List[str]:
        return list(self._schedulers.keys())
