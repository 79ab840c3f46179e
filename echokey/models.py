"""
EchoKey Data Model

TransactionRecord, Signal, ValidationOutcome, ValidationLogEntry and
ConfirmationEvent. All records are immutable; state changes produce new
records through the collaborators that own them.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .clock import format_timestamp, parse_timestamp, seconds_between
from .errors import ExpiredSignal, SignatureMismatch, ValidationFailed


class TransactionStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    EXPIRED = "expired"
    FAILED = "failed"


class OutcomeCode(str, Enum):
    """Machine-readable result of a validation attempt."""
    APPROVED = "APPROVED"
    EXPIRED = "EXPIRED"
    SIGNATURE_MISMATCH = "SIGNATURE_MISMATCH"
    VALIDATION_ERROR = "VALIDATION_ERROR"


@dataclass(frozen=True)
class TransactionRecord:
    """A submitted transfer (Channel 1)."""
    id: str
    network_id: str
    created_at: datetime
    status: TransactionStatus = TransactionStatus.PENDING
    sender: str = ""
    recipient: str = ""
    amount: str = ""

    def with_status(self, status: TransactionStatus) -> "TransactionRecord":
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "network_id": self.network_id,
            "created_at": format_timestamp(self.created_at),
            "status": self.status.value,
            "sender": self.sender,
            "recipient": self.recipient,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransactionRecord":
        return cls(
            id=data["id"],
            network_id=data["network_id"],
            created_at=parse_timestamp(data["created_at"]),
            status=TransactionStatus(data.get("status", TransactionStatus.PENDING.value)),
            sender=data.get("sender", ""),
            recipient=data.get("recipient", ""),
            amount=data.get("amount", ""),
        )


@dataclass(frozen=True)
class Signal:
    """
    The live Channel 2 code of a transaction.

    issued_at is the derivation timestamp; its ISO form is what the holder
    presents back at validation.
    """
    transaction_id: str
    code: str
    issued_at: datetime
    expires_at: datetime

    @property
    def issued_at_iso(self) -> str:
        return format_timestamp(self.issued_at)

    @property
    def expires_at_iso(self) -> str:
        return format_timestamp(self.expires_at)

    @property
    def window_seconds(self) -> int:
        return int(round(seconds_between(self.issued_at, self.expires_at)))

    def time_left(self, now: datetime) -> float:
        """Seconds until expiry; zero or negative once expired."""
        return seconds_between(now, self.expires_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "code": self.code,
            "issued_at": self.issued_at_iso,
            "expires_at": self.expires_at_iso,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Signal":
        return cls(
            transaction_id=data["transaction_id"],
            code=data["code"],
            issued_at=parse_timestamp(data["issued_at"]),
            expires_at=parse_timestamp(data["expires_at"]),
        )


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of one validation attempt. Produced once, never mutated."""
    approved: bool
    reason: str
    elapsed_seconds: float
    code: OutcomeCode

    @classmethod
    def approve(cls, elapsed: float) -> "ValidationOutcome":
        return cls(True, f"Valid signal. Verified in {elapsed:.1f}s", elapsed, OutcomeCode.APPROVED)

    @classmethod
    def expired(cls, elapsed: float, window_seconds: int) -> "ValidationOutcome":
        return cls(
            False,
            f"Signal expired. Elapsed: {elapsed:.1f}s / {window_seconds}s",
            elapsed,
            OutcomeCode.EXPIRED,
        )

    @classmethod
    def mismatch(cls, elapsed: float) -> "ValidationOutcome":
        return cls(False, "Signal code mismatch. Invalid signature.", elapsed,
                   OutcomeCode.SIGNATURE_MISMATCH)

    @classmethod
    def error(cls, message: str, elapsed: float = 0.0) -> "ValidationOutcome":
        return cls(False, f"Validation error: {message}", elapsed, OutcomeCode.VALIDATION_ERROR)

    def raise_for_denial(self) -> None:
        """Raise the matching SignalDenied subclass if this outcome is a denial."""
        if self.approved:
            return
        if self.code == OutcomeCode.EXPIRED:
            raise ExpiredSignal(self)
        if self.code == OutcomeCode.SIGNATURE_MISMATCH:
            raise SignatureMismatch(self)
        raise ValidationFailed(self)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approved": self.approved,
            "reason": self.reason,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "code": self.code.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationOutcome":
        return cls(
            approved=bool(data["approved"]),
            reason=data["reason"],
            elapsed_seconds=float(data.get("elapsed_seconds", 0.0)),
            code=OutcomeCode(data["code"]),
        )


@dataclass(frozen=True)
class ValidationLogEntry:
    """Audit trail row: a ValidationOutcome plus the context it was judged in."""
    id: str
    transaction_id: str
    signal_code: str
    issued_at: str
    outcome: ValidationOutcome
    validated_at: datetime
    network_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "signal_code": self.signal_code,
            "issued_at": self.issued_at,
            "result": self.outcome.to_dict(),
            "validated_at": format_timestamp(self.validated_at),
            "network_id": self.network_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationLogEntry":
        return cls(
            id=data["id"],
            transaction_id=data["transaction_id"],
            signal_code=data["signal_code"],
            issued_at=data["issued_at"],
            outcome=ValidationOutcome.from_dict(data["result"]),
            validated_at=parse_timestamp(data["validated_at"]),
            network_id=data["network_id"],
        )


@dataclass(frozen=True)
class ConfirmationEvent:
    """Notification that a transaction has been confirmed by its network."""
    transaction_id: str
    confirmed: bool = True
    block_number: Optional[int] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "confirmed": self.confirmed,
            "block_number": self.block_number,
            "timestamp": format_timestamp(self.timestamp),
        }
