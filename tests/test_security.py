import json
import logging

import pytest

from echokey_api.logging_config import AuditLogger, StructuredFormatter, set_request_id
from echokey_api.security import (
    InputError,
    mask_sensitive,
    sanitize_for_logging,
    validate_amount,
    validate_network_id,
    validate_transaction_id,
)


def test_transaction_id():
    assert validate_transaction_id("0xabc123") == "0xabc123"
    with pytest.raises(InputError):
        validate_transaction_id("has space")
    with pytest.raises(InputError):
        validate_transaction_id("x" * 129)


def test_network_id():
    assert validate_network_id("eth") == "ETH"
    with pytest.raises(InputError):
        validate_network_id("E-T-H")


def test_amount():
    assert validate_amount("1.50") == "1.50"
    assert validate_amount(2) == "2"
    for bad in ("0", "-1", "abc", "1e5"):
        with pytest.raises(InputError):
            validate_amount(bad)


def test_masking():
    assert mask_sensitive("BED41B2021A8DA6A") == "************DA6A"
    assert mask_sensitive("abc") == "***"
    assert mask_sensitive(None) == ""
    clean = sanitize_for_logging({"code": "BED41B2021A8DA6A", "nested": {"secret": 5}, "tx": "a"})
    assert clean == {"code": "************DA6A", "nested": {"secret": "[REDACTED]"}, "tx": "a"}


class _Collect(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_audit_events_mask_codes():
    handler = _Collect()
    logger = logging.getLogger("echokey.audit.masking")
    logger.addHandler(handler)
    try:
        audit = AuditLogger("echokey.audit.masking")
        audit.signal_issued("TX123", "BED41B2021A8DA6A", 60)
        audit.signal_refreshed("TX123", "0123456789ABCDEF", "2025-01-01T00:01:00.000Z")
    finally:
        logger.removeHandler(handler)

    issued, refreshed = (r.extra_fields for r in handler.records)
    assert issued["code"] == "************DA6A"
    assert issued["event_type"] == "SIGNAL_ISSUED"
    assert issued["transaction_id"] == "TX123"
    assert refreshed["code"] == "************CDEF"


def test_structured_formatter_includes_request_id_and_fields():
    set_request_id("req-42")
    record = logging.LogRecord("echokey.audit", logging.INFO, __file__, 1, "SIGNAL_ISSUED: x", (), None)
    record.extra_fields = {"event_type": "SIGNAL_ISSUED", "code": "************DA6A"}

    data = json.loads(StructuredFormatter().format(record))
    assert data["request_id"] == "req-42"
    assert data["event_type"] == "SIGNAL_ISSUED"
    assert data["level"] == "INFO"
