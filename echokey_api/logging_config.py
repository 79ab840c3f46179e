"""
Logging configuration for the EchoKey service.

Provides structured JSON logging and a typed audit event logger.
Signal codes never appear in full in log output.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

from .security import sanitize_for_logging

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": time.strftime('%Y-%m-%dT%H:%M:%SZ', time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_fields'):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class AuditLogger:
    """
    Specialized logger for signal lifecycle and validation events.
    """

    def __init__(self, name: str = "echokey.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method; sensitive fields are masked before emitting."""
        extra = sanitize_for_logging({
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        })

        record = self._logger.makeRecord(
            self._logger.name,
            level,
            "",
            0,
            f"{event_type}: {kwargs.get('message', '')}",
            (),
            None
        )
        record.extra_fields = extra
        self._logger.handle(record)

    def transaction_created(self, transaction_id: str, network_id: str) -> None:
        self._log(
            logging.INFO,
            "TRANSACTION_CREATED",
            transaction_id=transaction_id,
            network_id=network_id,
            message=f"Transaction created on {network_id}"
        )

    def signal_issued(self, transaction_id: str, code: str, window_seconds: int) -> None:
        self._log(
            logging.INFO,
            "SIGNAL_ISSUED",
            transaction_id=transaction_id,
            code=code,
            window_seconds=window_seconds,
            message=f"Signal issued (TTL {window_seconds}s)"
        )

    def signal_refreshed(self, transaction_id: str, code: str, expires_at: str) -> None:
        self._log(
            logging.INFO,
            "SIGNAL_REFRESHED",
            transaction_id=transaction_id,
            code=code,
            expires_at=expires_at,
            message="Signal auto-refreshed"
        )

    def refresh_stopped(self, transaction_id: str, state: str, renewals: int) -> None:
        self._log(
            logging.INFO,
            "REFRESH_STOPPED",
            transaction_id=transaction_id,
            state=state,
            renewals=renewals,
            message=f"Signal refresh stopped: {state}"
        )

    def validation_decision(
        self,
        transaction_id: str,
        approved: bool,
        outcome_code: str,
        elapsed_seconds: float
    ) -> None:
        """Log a validation decision."""
        level = logging.INFO if approved else logging.WARNING
        self._log(
            level,
            "VALIDATION_DECISION",
            transaction_id=transaction_id,
            approved=approved,
            outcome=outcome_code,
            elapsed_seconds=round(elapsed_seconds, 3),
            message=f"Validation {'approved' if approved else 'denied'}: {outcome_code}"
        )

    def confirmation_received(self, transaction_id: str, block_number: Optional[int]) -> None:
        self._log(
            logging.INFO,
            "CONFIRMATION_RECEIVED",
            transaction_id=transaction_id,
            block_number=block_number,
            message=f"Confirmation received for {transaction_id}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (recommended for production)
        log_file: Optional file path for log output
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set the request ID for the current context.

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


# Global audit logger instance
audit_log = AuditLogger()
