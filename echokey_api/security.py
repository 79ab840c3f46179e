"""
Security module for the EchoKey service.

Input validation for request fields, and masking helpers for logs.
"""

import re
from typing import Any, Dict, List, Optional

# Regex patterns for validation
TRANSACTION_ID_PATTERN = re.compile(r'^[A-Za-z0-9_:-]{1,128}$')
NETWORK_ID_PATTERN = re.compile(r'^[A-Za-z0-9]{2,16}$')
AMOUNT_PATTERN = re.compile(r'^\d+(\.\d{1,18})?$')


class InputError(ValueError):
    """Raised when input validation fails."""
    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


def validate_transaction_id(value: str) -> str:
    if not isinstance(value, str) or not TRANSACTION_ID_PATTERN.match(value):
        raise InputError("transaction_id", "invalid format")
    return value


def validate_network_id(value: str) -> str:
    """Validate a network id. Returns it upper-cased."""
    if not isinstance(value, str) or not NETWORK_ID_PATTERN.match(value):
        raise InputError("network_id", "invalid format")
    return value.upper()


def validate_amount(value: Any) -> str:
    """Validate a positive decimal amount. Returns its string form."""
    text = str(value).strip()
    if not AMOUNT_PATTERN.match(text):
        raise InputError("amount", "must be a decimal number")
    if float(text) <= 0:
        raise InputError("amount", "must be positive")
    return text


def mask_sensitive(value: Optional[str], visible_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only the last N characters.
    """
    if not value:
        return ""
    if len(value) <= visible_chars:
        return '*' * len(value)
    return '*' * (len(value) - visible_chars) + value[-visible_chars:]


def sanitize_for_logging(data: Dict[str, Any], sensitive_fields: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Return a copy of data with sensitive fields masked.
    """
    if sensitive_fields is None:
        sensitive_fields = ["code", "signal_code", "secret", "private_key_b64", "token"]

    result = {}
    for key, value in data.items():
        if key in sensitive_fields:
            result[key] = mask_sensitive(value) if isinstance(value, str) else "[REDACTED]"
        elif isinstance(value, dict):
            result[key] = sanitize_for_logging(value, sensitive_fields)
        else:
            result[key] = value
    return result
