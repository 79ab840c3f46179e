"""
EchoKey Code Derivation

The Channel 2 code is bound to the Channel 1 transaction identifier and
to the instant of issuance:

    code = UPPER(HEX(HMAC-SHA-256(secret, "{transaction_id}:{timestamp}"))[:16])

Derivation is deterministic so the validator can re-derive the expected
code from the submitted identifier and timestamp alone.
"""

import hashlib
import hmac
from typing import Union

from .errors import CryptoUnavailable

CODE_LENGTH = 16

SecretType = Union[bytes, str]


def _secret_bytes(secret: SecretType) -> bytes:
    if isinstance(secret, str):
        return secret.encode('utf-8')
    return bytes(secret)


def derive_code(transaction_id: str, timestamp: str, secret: SecretType) -> str:
    """
    Derive the signal code for a transaction at a given timestamp.

    Args:
        transaction_id: Channel 1 identifier
        timestamp: ISO-8601 issuance timestamp, exactly as transmitted
        secret: Shared secret known only to issuer and validator

    Returns:
        16 uppercase hexadecimal characters

    Raises:
        CryptoUnavailable: If HMAC-SHA-256 cannot be initialized
    """
    message = f"{transaction_id}:{timestamp}".encode('utf-8')
    try:
        mac = hmac.new(_secret_bytes(secret), message, hashlib.sha256)
    except (ValueError, TypeError) as e:
        raise CryptoUnavailable(f"HMAC-SHA-256 unavailable: {e}") from e
    return mac.hexdigest()[:CODE_LENGTH].upper()


def codes_match(submitted: str, expected: str) -> bool:
    """
    Case-insensitive, constant-time comparison of two codes.

    Non-string or non-ASCII input never matches.
    """
    if not isinstance(submitted, str) or not isinstance(expected, str):
        return False
    try:
        a = submitted.upper().encode('ascii')
        b = expected.upper().encode('ascii')
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(a, b)


class CodeDeriver:
    """
    Holds the process-wide secret and derives codes with it.

    The secret is injected once at construction and never exposed.
    """

    def __init__(self, secret: SecretType):
        if not secret:
            raise ValueError("secret must not be empty")
        self._secret = _secret_bytes(secret)

    def derive(self, transaction_id: str, timestamp: str) -> str:
        return derive_code(transaction_id, timestamp, self._secret)

    def matches(self, transaction_id: str, timestamp: str, submitted_code: str) -> bool:
        return codes_match(submitted_code, self.derive(transaction_id, timestamp))

    def __repr__(self) -> str:
        return "CodeDeriver(secret=<redacted>)"
