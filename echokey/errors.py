"""
EchoKey Error Taxonomy

Only infrastructure failures are true errors. A denied validation is
business logic and is reported as a ValidationOutcome, never raised,
unless the caller explicitly asks for exception flow through
ValidationOutcome.raise_for_denial().
"""

from typing import Optional


class EchoKeyError(Exception):
    """Base class for all EchoKey errors."""


class CryptoUnavailable(EchoKeyError):
    """The HMAC primitive could not be initialized. Fatal to the operation."""


class StoreUnavailable(EchoKeyError):
    """A persistence collaborator failed (signals, transactions or audit log)."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"Store unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class UnknownTransaction(EchoKeyError):
    """No transaction record exists for the given identifier."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Unknown transaction: {transaction_id}")


class SignalDenied(EchoKeyError):
    """Raised by ValidationOutcome.raise_for_denial() for a denied outcome."""

    def __init__(self, outcome):
        self.outcome = outcome
        super().__init__(outcome.reason)


class ExpiredSignal(SignalDenied):
    """The signal is older than its validity window. The caller may reissue."""


class SignatureMismatch(SignalDenied):
    """The submitted code does not match the re-derived code."""


class ValidationFailed(SignalDenied):
    """Validation could not be evaluated (malformed timestamp, crypto error)."""
