"""
Refresh Scheduler tests, driven on a virtual clock.
"""

import unittest
from datetime import datetime, timedelta, timezone

from echokey import (
    CodeDeriver,
    ManualClock,
    RefreshRegistry,
    RefreshScheduler,
    RefreshState,
    SignalStore,
    StoreUnavailable,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)


class FlakyStore(SignalStore):
    """Fails the first `failures` issue calls."""

    def __init__(self, *args, failures=1, **kwargs):
        super().__init__(*args, **kwargs)
        self.remaining_failures = failures

    async def issue(self, transaction_id, network_id, now=None):
        if self.remaining_failures > 0:
            self.remaining_failures -= 1
            raise StoreUnavailable("issue", OSError("timeout"))
        return await super().issue(transaction_id, network_id, now)


class TestRefreshTick(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = ManualClock(T0)
        self.store = SignalStore(CodeDeriver("SECRET"), clock=self.clock)
        self.original = await self.store.issue("TX123", "ETH")
        self.scheduler = RefreshScheduler(self.store, "TX123", "ETH", clock=self.clock)

    async def test_renews_when_close_to_expiry(self):
        await self.clock.advance(52)  # 8s left
        state = await self.scheduler.tick()

        self.assertEqual(state, RefreshState.ACTIVE)
        self.assertEqual(self.scheduler.renewals, 1)
        renewed = await self.store.get("TX123")
        self.assertGreater(renewed.expires_at, self.original.expires_at)
        self.assertEqual(renewed.issued_at, T0 + timedelta(seconds=52))
        self.assertNotEqual(renewed.code, self.original.code)

    async def test_no_renewal_with_time_to_spare(self):
        await self.clock.advance(30)
        await self.scheduler.tick()
        self.assertEqual(self.scheduler.renewals, 0)
        self.assertEqual(await self.store.get("TX123"), self.original)

    async def test_threshold_is_exclusive(self):
        await self.clock.advance(50)  # exactly 10s left
        await self.scheduler.tick()
        self.assertEqual(self.scheduler.renewals, 0)

    async def test_expired_signal_stops(self):
        await self.clock.advance(60)
        state = await self.scheduler.tick()

        self.assertEqual(state, RefreshState.STOPPED_EXPIRED)
        self.assertFalse(self.scheduler.active)
        self.assertEqual(self.scheduler.renewals, 0)
        self.assertEqual(await self.store.get("TX123"), self.original)

    async def test_missing_signal_stops(self):
        await self.store.clear("TX123")
        state = await self.scheduler.tick()
        self.assertEqual(state, RefreshState.STOPPED_NO_SIGNAL)

    async def test_failed_renewal_retried_next_tick(self):
        store = FlakyStore(CodeDeriver("SECRET"), clock=self.clock, failures=0)
        await store.issue("TX123", "ETH")
        store.remaining_failures = 1
        scheduler = RefreshScheduler(store, "TX123", "ETH", clock=self.clock)

        await self.clock.advance(52)
        self.assertEqual(await scheduler.tick(), RefreshState.ACTIVE)
        self.assertEqual(scheduler.failures, 1)
        self.assertEqual(scheduler.renewals, 0)

        await self.clock.advance(5)
        self.assertEqual(await scheduler.tick(), RefreshState.ACTIVE)
        self.assertEqual(scheduler.renewals, 1)

    async def test_stop_is_idempotent(self):
        stopped = []
        scheduler = RefreshScheduler(
            self.store, "TX123", "ETH", clock=self.clock, on_stopped=stopped.append
        )
        scheduler.stop()
        scheduler.stop()

        self.assertEqual(scheduler.state, RefreshState.STOPPED_CANCELLED)
        self.assertEqual(stopped, [scheduler])
        self.assertEqual(await scheduler.tick(), RefreshState.STOPPED_CANCELLED)

    async def test_terminal_state_is_final(self):
        await self.clock.advance(60)
        await self.scheduler.tick()
        self.scheduler.stop()
        self.assertEqual(self.scheduler.state, RefreshState.STOPPED_EXPIRED)

    async def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            RefreshScheduler(self.store, "TX123", "ETH", interval_seconds=0)


class TestRefreshLoop(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = ManualClock(T0)
        self.store = SignalStore(CodeDeriver("SECRET"), clock=self.clock)
        await self.store.issue("TX123", "ETH")

    async def test_keeps_signal_alive(self):
        renewed = []
        scheduler = RefreshScheduler(
            self.store, "TX123", "ETH", clock=self.clock,
            on_renewed=lambda s, signal: renewed.append(signal),
        ).start()

        await self.clock.advance(55)
        self.assertEqual(scheduler.renewals, 1)

        await self.clock.advance(300)
        self.assertTrue(scheduler.active)
        signal = await self.store.get("TX123")
        self.assertGreater(signal.time_left(self.clock.now()), 0)
        self.assertEqual(len(renewed), scheduler.renewals)

        scheduler.stop()
        self.assertEqual(await scheduler.wait(), RefreshState.STOPPED_CANCELLED)

    async def test_stops_when_signal_expires_between_ticks(self):
        scheduler = RefreshScheduler(
            self.store, "TX123", "ETH", clock=self.clock, interval_seconds=100
        ).start()

        await self.clock.advance(100)
        self.assertEqual(await scheduler.wait(), RefreshState.STOPPED_EXPIRED)
        self.assertEqual(self.clock.pending_sleepers, 0)

    async def test_no_ticks_after_stop(self):
        scheduler = RefreshScheduler(self.store, "TX123", "ETH", clock=self.clock).start()
        await self.clock.advance(5)
        scheduler.stop()
        await scheduler.wait()

        before = await self.store.get("TX123")
        await self.clock.advance(120)
        self.assertEqual(await self.store.get("TX123"), before)
        self.assertEqual(scheduler.renewals, 0)


class TestRefreshRegistry(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = ManualClock(T0)
        self.store = SignalStore(CodeDeriver("SECRET"), clock=self.clock)
        self.stopped = []
        self.registry = RefreshRegistry(self.store, on_stopped=self.stopped.append)
        await self.store.issue("A", "ETH")
        await self.store.issue("B", "ETH")

    async def test_one_scheduler_per_transaction(self):
        first = self.registry.start("A", "ETH")
        second = self.registry.start("A", "ETH")

        self.assertEqual(first.state, RefreshState.STOPPED_CANCELLED)
        self.assertIs(self.registry.get("A"), second)
        self.assertEqual(self.registry.active_ids(), ["A"])
        self.registry.stop_all()

    async def test_stop(self):
        self.registry.start("A", "ETH")
        self.assertTrue(self.registry.stop("A"))
        self.assertFalse(self.registry.stop("A"))
        self.assertIsNone(self.registry.get("A"))
        self.assertEqual([s.transaction_id for s in self.stopped], ["A"])

    async def test_finished_scheduler_leaves_registry(self):
        self.registry.start("A", "ETH")
        await self.store.clear("A")
        await self.clock.advance(5)
        self.assertIsNone(self.registry.get("A"))
        self.assertEqual(self.stopped[0].state, RefreshState.STOPPED_NO_SIGNAL)

    async def test_stop_all(self):
        self.registry.start("A", "ETH")
        self.registry.start("B", "ETH")
        self.assertEqual(self.registry.stop_all(), 2)
        self.assertEqual(self.registry.active_ids(), [])


if __name__ == "__main__":
    unittest.main()
