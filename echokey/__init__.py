"""
EchoKey Split-Signal Authentication Engine

Version: 1.0.0

A high-value transfer is approved only when two independent signals are
presented together inside a validity window:

    Channel 1: the transaction identifier
    Channel 2: a short code bound to that identifier and to its issuance time

    code = UPPER(HEX(HMAC-SHA-256(secret, "{transaction_id}:{issued_at}"))[:16])

Windows adapt to the settlement network (max(60s, 4 x average block time)),
and a refresh scheduler keeps a signal alive while the network confirmation
is still pending.

Usage:
    from echokey import EchoKeyService

    service = EchoKeyService(secret=b"...")

    tx = await service.create_transaction(sender, recipient, "2.5", "ETH")
    signal = await service.issue_signal(tx.id)
    await service.start_refresh(tx.id)

    outcome = await service.validate(tx.id, signal.code, signal.issued_at_iso)
    if outcome.approved:
        release(tx.id)
    else:
        print(outcome.reason)
"""

__version__ = "1.0.0"

# Time
from .clock import (
    Clock,
    SystemClock,
    ManualClock,
    format_timestamp,
    parse_timestamp,
)

# Errors
from .errors import (
    EchoKeyError,
    CryptoUnavailable,
    StoreUnavailable,
    UnknownTransaction,
    SignalDenied,
    ExpiredSignal,
    SignatureMismatch,
    ValidationFailed,
)

# Derivation and windows
from .deriver import CodeDeriver, derive_code, codes_match, CODE_LENGTH
from .networks import (
    NetworkProfile,
    NETWORKS,
    DEFAULT_NETWORK,
    get_network,
    average_latency,
    is_valid_address,
    supported_networks,
)
from .ttl import TTLPolicy, window_seconds

# Data model
from .models import (
    TransactionStatus,
    OutcomeCode,
    TransactionRecord,
    Signal,
    ValidationOutcome,
    ValidationLogEntry,
    ConfirmationEvent,
)

# Collaborators
from .storage import (
    SignalBackend,
    TransactionRepository,
    AuditLog,
    InMemorySignalBackend,
    InMemoryTransactionRepository,
    InMemoryAuditLog,
)

# Engine
from .store import SignalStore
from .validator import Validator
from .scheduler import RefreshState, RefreshScheduler, RefreshRegistry
from .events import ConfirmationEvents, Subscription
from .service import EchoKeyService, make_transaction_id

__all__ = [
    "__version__",
    "Clock",
    "SystemClock",
    "ManualClock",
    "format_timestamp",
    "parse_timestamp",
    "EchoKeyError",
    "CryptoUnavailable",
    "StoreUnavailable",
    "UnknownTransaction",
    "SignalDenied",
    "ExpiredSignal",
    "SignatureMismatch",
    "ValidationFailed",
    "CodeDeriver",
    "derive_code",
    "codes_match",
    "CODE_LENGTH",
    "NetworkProfile",
    "NETWORKS",
    "DEFAULT_NETWORK",
    "get_network",
    "average_latency",
    "is_valid_address",
    "supported_networks",
    "TTLPolicy",
    "window_seconds",
    "TransactionStatus",
    "OutcomeCode",
    "TransactionRecord",
    "Signal",
    "ValidationOutcome",
    "ValidationLogEntry",
    "ConfirmationEvent",
    "SignalBackend",
    "TransactionRepository",
    "AuditLog",
    "InMemorySignalBackend",
    "InMemoryTransactionRepository",
    "InMemoryAuditLog",
    "SignalStore",
    "Validator",
    "RefreshState",
    "RefreshScheduler",
    "RefreshRegistry",
    "ConfirmationEvents",
    "Subscription",
    "EchoKeyService",
    "make_transaction_id",
]
