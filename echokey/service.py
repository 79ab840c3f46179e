"""
EchoKey Transaction Service

Facade over the engine implementing the external operations:

    create_transaction     -> TransactionRecord (Channel 1)
    issue_signal           -> Signal (Channel 2)
    validate               -> ValidationOutcome
    list_validation_log / clear_validation_log
    on_confirmation_event  -> Subscription

plus the administrative listing/clearing of transactions and the
keep-alive controls. A confirmation event for a transaction stops its
keep-alive scheduler.
"""

import hashlib
import logging
import secrets
from datetime import datetime
from typing import Callable, List, Optional

from .clock import Clock, SystemClock, format_timestamp, truncate_ms
from .deriver import CodeDeriver, SecretType
from .errors import UnknownTransaction
from .events import ConfirmationEvents, Listener, Subscription
from .models import (
    ConfirmationEvent,
    Signal,
    TransactionRecord,
    TransactionStatus,
    ValidationLogEntry,
    ValidationOutcome,
)
from .networks import DEFAULT_NETWORK, get_network, normalize_network_id
from .scheduler import (
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_THRESHOLD_SECONDS,
    RefreshRegistry,
    RefreshScheduler,
)
from .storage import (
    AuditLog,
    InMemoryAuditLog,
    InMemorySignalBackend,
    InMemoryTransactionRepository,
    SignalBackend,
    TransactionRepository,
    call_backend,
)
from .store import SignalStore
from .ttl import TTLPolicy
from .validator import Validator

logger = logging.getLogger(__name__)


def make_transaction_id(
    sender: str,
    recipient: str,
    amount: str,
    network_id: str,
    created_at: datetime
) -> str:
    """
    Build a transaction identifier in the network's hash format.

    SHA-256 over sender, recipient, amount, creation time and a random
    nonce; EVM networks get a 0x prefix.
    """
    nonce = secrets.token_hex(8)
    data = f"{sender}:{recipient}:{amount}:{format_timestamp(created_at)}:{nonce}"
    digest = hashlib.sha256(data.encode('utf-8')).hexdigest()
    profile = get_network(network_id)
    prefix = profile.tx_prefix if profile else ""
    return prefix + digest


class EchoKeyService:
    """
    Usage:
        service = EchoKeyService(secret=b"...")

        tx = await service.create_transaction("0xabc...", "0xdef...", "1.5", "ETH")
        signal = await service.issue_signal(tx.id)
        await service.start_refresh(tx.id)

        outcome = await service.validate(tx.id, signal.code, signal.issued_at_iso)
    """

    def __init__(
        self,
        secret: SecretType,
        signal_backend: Optional[SignalBackend] = None,
        transactions: Optional[TransactionRepository] = None,
        audit_log: Optional[AuditLog] = None,
        ttl_policy: Optional[TTLPolicy] = None,
        clock: Optional[Clock] = None,
        events: Optional[ConfirmationEvents] = None,
        refresh_interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        refresh_threshold_seconds: float = DEFAULT_THRESHOLD_SECONDS,
        on_renewed: Optional[Callable[[RefreshScheduler, Signal], None]] = None,
        on_refresh_stopped: Optional[Callable[[RefreshScheduler], None]] = None
    ):
        self.clock = clock or SystemClock()
        self.ttl_policy = ttl_policy or TTLPolicy()
        self.transactions = transactions or InMemoryTransactionRepository()
        self.audit_log = audit_log or InMemoryAuditLog()
        deriver = CodeDeriver(secret)
        self.signals = SignalStore(
            deriver,
            signal_backend or InMemorySignalBackend(),
            self.ttl_policy,
            self.clock,
        )
        self.validator = Validator(deriver, self.transactions, self.audit_log, self.clock)
        self.refreshers = RefreshRegistry(
            self.signals,
            clock=self.clock,
            interval_seconds=refresh_interval_seconds,
            threshold_seconds=refresh_threshold_seconds,
            on_renewed=on_renewed,
            on_stopped=on_refresh_stopped,
        )
        self.events = events or ConfirmationEvents()
        self._confirmations = self.events.subscribe(self._handle_confirmation)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        sender: str,
        recipient: str,
        amount: str,
        network_id: str = DEFAULT_NETWORK
    ) -> TransactionRecord:
        network_id = normalize_network_id(network_id)
        created_at = truncate_ms(self.clock.now())
        record = TransactionRecord(
            id=make_transaction_id(sender, recipient, amount, network_id, created_at),
            network_id=network_id,
            created_at=created_at,
            status=TransactionStatus.PENDING,
            sender=sender,
            recipient=recipient,
            amount=str(amount),
        )
        await call_backend("create_transaction", self.transactions.add(record))
        logger.info("Transaction %s created on %s", record.id, network_id)
        return record

    async def get_transaction(self, transaction_id: str) -> TransactionRecord:
        record = await call_backend("get_transaction", self.transactions.get(transaction_id))
        if record is None:
            raise UnknownTransaction(transaction_id)
        return record

    async def list_transactions(self) -> List[TransactionRecord]:
        return await call_backend("list_transactions", self.transactions.list_recent())

    async def clear_transactions(self) -> bool:
        """Admin clear of all transactions and their signals."""
        self.refreshers.stop_all()
        await call_backend("clear_transactions", self.transactions.clear())
        await self.signals.clear_all()
        return True

    async def _network_for(self, transaction_id: str, network_id: Optional[str] = None) -> str:
        if network_id:
            return normalize_network_id(network_id)
        record = await call_backend("lookup", self.transactions.get(transaction_id))
        return record.network_id if record else DEFAULT_NETWORK

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    async def issue_signal(self, transaction_id: str, network_id: Optional[str] = None) -> Signal:
        """Issue (or reissue) the Channel 2 signal of a transaction."""
        network = await self._network_for(transaction_id, network_id)
        return await self.signals.issue(transaction_id, network)

    async def get_signal(self, transaction_id: str) -> Optional[Signal]:
        return await self.signals.get(transaction_id)

    async def start_refresh(self, transaction_id: str, network_id: Optional[str] = None) -> RefreshScheduler:
        network = await self._network_for(transaction_id, network_id)
        return self.refreshers.start(transaction_id, network)

    def stop_refresh(self, transaction_id: str) -> bool:
        return self.refreshers.stop(transaction_id)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate(self, transaction_id: str, code: str, issued_at: str) -> ValidationOutcome:
        """
        Validate a Channel 1 / Channel 2 pair.

        The window is the adaptive window of the transaction's network at
        call time (default network when the transaction is unknown).
        """
        network = await self._network_for(transaction_id)
        window = self.ttl_policy.window_seconds(network)
        return await self.validator.validate(transaction_id, code, issued_at, window)

    async def list_validation_log(self) -> List[ValidationLogEntry]:
        return await call_backend("list_validation_log", self.audit_log.list_recent())

    async def clear_validation_log(self) -> bool:
        await call_backend("clear_validation_log", self.audit_log.clear())
        return True

    # ------------------------------------------------------------------
    # Confirmation events
    # ------------------------------------------------------------------

    def on_confirmation_event(self, listener: Listener) -> Subscription:
        return self.events.subscribe(listener)

    async def publish_confirmation(self, event: ConfirmationEvent) -> int:
        return await self.events.publish(event)

    def _handle_confirmation(self, event: ConfirmationEvent) -> None:
        if event.confirmed and self.refreshers.stop(event.transaction_id):
            logger.info("Keep-alive for %s ended by confirmation", event.transaction_id)

    def close(self) -> None:
        """Stop every keep-alive and detach from the event channel."""
        self.refreshers.stop_all()
        self._confirmations.unsubscribe()
