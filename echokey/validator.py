"""
EchoKey Signal Validator

Judges a submitted (transaction id, code, issuance timestamp) triple.
Checks run in order and the first failure wins:

1. Freshness: elapsed = now - issued_at must not exceed the window
2. Binding: the code must equal the code re-derived from id and timestamp
3. Otherwise the transfer is approved

Every failure resolves to a denied ValidationOutcome. Nothing raised by
timestamp parsing or derivation escapes evaluate(). Only the recording
side effects of validate() (status transition and audit entry) can raise,
and then only StoreUnavailable.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable, Optional, Union

from .clock import Clock, SystemClock, format_timestamp, parse_timestamp, seconds_between
from .deriver import CodeDeriver, codes_match
from .models import (
    TransactionStatus,
    ValidationLogEntry,
    ValidationOutcome,
)
from .networks import DEFAULT_NETWORK
from .storage import (
    AuditLog,
    InMemoryAuditLog,
    InMemoryTransactionRepository,
    TransactionRepository,
    call_backend,
)

logger = logging.getLogger(__name__)


def _new_log_id() -> str:
    return f"log_{uuid.uuid4().hex[:16]}"


def _timestamp_text(issued_at) -> str:
    """The timestamp exactly as presented; datetimes are rendered in wire form."""
    if isinstance(issued_at, datetime):
        return format_timestamp(issued_at)
    return str(issued_at)


class Validator:
    """
    Usage:
        validator = Validator(CodeDeriver(secret), transactions, audit_log)

        outcome = await validator.validate(tx_id, code, issued_at, window_seconds=60)
        if outcome.approved:
            release_transfer(tx_id)
    """

    def __init__(
        self,
        deriver: CodeDeriver,
        transactions: Optional[TransactionRepository] = None,
        audit_log: Optional[AuditLog] = None,
        clock: Optional[Clock] = None,
        id_factory: Callable[[], str] = _new_log_id
    ):
        self.deriver = deriver
        self.transactions = transactions or InMemoryTransactionRepository()
        self.audit_log = audit_log or InMemoryAuditLog()
        self.clock = clock or SystemClock()
        self._id_factory = id_factory

    def evaluate(
        self,
        transaction_id: str,
        submitted_code: str,
        issued_at: Union[str, datetime],
        window_seconds: int,
        now: Optional[datetime] = None
    ) -> ValidationOutcome:
        """
        Decide approval without side effects.

        Args:
            transaction_id: Channel 1 identifier
            submitted_code: Channel 2 code as presented (any case)
            issued_at: Issuance timestamp as presented with the code
            window_seconds: Validity window of the signal
            now: Evaluation instant (defaults to the validator clock)

        Returns:
            ValidationOutcome with approval, reason and elapsed seconds
        """
        now = now or self.clock.now()
        try:
            issued = parse_timestamp(issued_at)
            elapsed = seconds_between(issued, now)
        except (ValueError, TypeError, OverflowError) as e:
            return ValidationOutcome.error(str(e))

        if elapsed > window_seconds:
            return ValidationOutcome.expired(elapsed, window_seconds)

        timestamp = _timestamp_text(issued_at)
        try:
            expected = self.deriver.derive(transaction_id, timestamp)
        except Exception as e:
            logger.error("Code derivation failed during validation of %s: %s", transaction_id, e)
            return ValidationOutcome.error(str(e), elapsed)

        if not codes_match(submitted_code, expected):
            return ValidationOutcome.mismatch(elapsed)

        return ValidationOutcome.approve(elapsed)

    async def validate(
        self,
        transaction_id: str,
        submitted_code: str,
        issued_at: Union[str, datetime],
        window_seconds: int,
        now: Optional[datetime] = None
    ) -> ValidationOutcome:
        """
        Evaluate a submission, transition the transaction status and append
        the outcome to the audit log.

        Raises:
            StoreUnavailable: If the status update or the audit append fails
        """
        now = now or self.clock.now()
        outcome = self.evaluate(transaction_id, submitted_code, issued_at, window_seconds, now)

        record = await call_backend("validate", self.transactions.get(transaction_id))
        if record is not None:
            status = TransactionStatus.VALIDATED if outcome.approved else TransactionStatus.FAILED
            await call_backend("validate", self.transactions.update_status(transaction_id, status))

        entry = ValidationLogEntry(
            id=self._id_factory(),
            transaction_id=transaction_id,
            signal_code=submitted_code,
            issued_at=_timestamp_text(issued_at),
            outcome=outcome,
            validated_at=now,
            network_id=record.network_id if record else DEFAULT_NETWORK,
        )
        await call_backend("validate", self.audit_log.append(entry))

        logger.info(
            "Validation %s for %s: %s",
            "approved" if outcome.approved else "denied",
            transaction_id,
            outcome.code.value,
        )
        return outcome
