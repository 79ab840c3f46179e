"""
End-to-end tests of the transaction service facade.
"""

import re
import unittest
from datetime import datetime, timezone

from echokey import (
    ConfirmationEvent,
    EchoKeyService,
    ManualClock,
    OutcomeCode,
    RefreshState,
    TransactionStatus,
    UnknownTransaction,
    make_transaction_id,
)

T0 = datetime(2025, 1, 1, tzinfo=timezone.utc)
SENDER = "0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"
RECIPIENT = "0x8ba1f109551bD432803012645Ac136ddd64DBA72"


class TestTransactionIds(unittest.TestCase):

    def test_evm_ids_are_prefixed(self):
        tx_id = make_transaction_id(SENDER, RECIPIENT, "1.5", "ETH", T0)
        self.assertRegex(tx_id, r'^0x[0-9a-f]{64}$')

    def test_non_evm_ids(self):
        tx_id = make_transaction_id("a", "b", "1", "BTC", T0)
        self.assertRegex(tx_id, r'^[0-9a-f]{64}$')

    def test_ids_are_unique(self):
        ids = {make_transaction_id(SENDER, RECIPIENT, "1.5", "ETH", T0) for _ in range(20)}
        self.assertEqual(len(ids), 20)


class TestEchoKeyService(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.clock = ManualClock(T0)
        self.service = EchoKeyService(secret="SECRET", clock=self.clock)

    async def asyncTearDown(self):
        self.service.close()

    async def test_issue_then_validate(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1.5", "eth")
        self.assertEqual(tx.network_id, "ETH")
        self.assertEqual(tx.status, TransactionStatus.PENDING)

        signal = await self.service.issue_signal(tx.id)
        self.assertEqual(signal.window_seconds, 60)
        self.assertTrue(re.match(r'^[0-9A-F]{16}$', signal.code))

        await self.clock.advance(30)
        outcome = await self.service.validate(tx.id, signal.code, signal.issued_at_iso)

        self.assertTrue(outcome.approved)
        self.assertEqual((await self.service.get_transaction(tx.id)).status, TransactionStatus.VALIDATED)

    async def test_late_validation_expires(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1.5", "ETH")
        signal = await self.service.issue_signal(tx.id)

        await self.clock.advance(120)
        outcome = await self.service.validate(tx.id, signal.code, signal.issued_at_iso)

        self.assertEqual(outcome.code, OutcomeCode.EXPIRED)
        self.assertEqual((await self.service.get_transaction(tx.id)).status, TransactionStatus.FAILED)

    async def test_window_follows_transaction_network(self):
        tx = await self.service.create_transaction("bc1sender", "bc1recipient", "0.1", "BTC")
        signal = await self.service.issue_signal(tx.id)

        await self.clock.advance(1000)
        outcome = await self.service.validate(tx.id, signal.code, signal.issued_at_iso)
        self.assertTrue(outcome.approved)

    async def test_unknown_transaction(self):
        with self.assertRaises(UnknownTransaction):
            await self.service.get_transaction("missing")

    async def test_listing_is_most_recent_first(self):
        first = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        second = await self.service.create_transaction(SENDER, RECIPIENT, "2", "SOL")
        listed = await self.service.list_transactions()
        self.assertEqual([t.id for t in listed], [second.id, first.id])

    async def test_validation_log(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        signal = await self.service.issue_signal(tx.id)
        await self.service.validate(tx.id, "0" * 16, signal.issued_at_iso)
        await self.service.validate(tx.id, signal.code, signal.issued_at_iso)

        entries = await self.service.list_validation_log()
        self.assertEqual([e.outcome.code for e in entries], [OutcomeCode.APPROVED, OutcomeCode.SIGNATURE_MISMATCH])

        self.assertTrue(await self.service.clear_validation_log())
        self.assertEqual(await self.service.list_validation_log(), [])

    async def test_refresh_keeps_code_valid_past_window(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        await self.service.issue_signal(tx.id)
        await self.service.start_refresh(tx.id)

        await self.clock.advance(300)
        signal = await self.service.get_signal(tx.id)
        outcome = await self.service.validate(tx.id, signal.code, signal.issued_at_iso)
        self.assertTrue(outcome.approved)

    async def test_confirmation_stops_refresh(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        await self.service.issue_signal(tx.id)
        scheduler = await self.service.start_refresh(tx.id)

        seen = []
        self.service.on_confirmation_event(seen.append)
        delivered = await self.service.publish_confirmation(ConfirmationEvent(tx.id, block_number=7))

        self.assertEqual(delivered, 2)
        self.assertEqual(scheduler.state, RefreshState.STOPPED_CANCELLED)
        self.assertIsNone(self.service.refreshers.get(tx.id))
        self.assertEqual(seen[0].block_number, 7)

    async def test_unconfirmed_event_keeps_refresh(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        await self.service.issue_signal(tx.id)
        scheduler = await self.service.start_refresh(tx.id)

        await self.service.publish_confirmation(ConfirmationEvent(tx.id, confirmed=False))
        self.assertTrue(scheduler.active)

    async def test_clear_transactions(self):
        tx = await self.service.create_transaction(SENDER, RECIPIENT, "1", "ETH")
        await self.service.issue_signal(tx.id)
        scheduler = await self.service.start_refresh(tx.id)

        self.assertTrue(await self.service.clear_transactions())

        self.assertEqual(await self.service.list_transactions(), [])
        self.assertIsNone(await self.service.get_signal(tx.id))
        self.assertFalse(scheduler.active)


if __name__ == "__main__":
    unittest.main()
