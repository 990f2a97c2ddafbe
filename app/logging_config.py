"""
Logging configuration for the QRSeal service.

Provides structured JSON logging for audit trails and debugging.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs in a consistent JSON format suitable for
    log aggregation systems like ELK, Splunk, or CloudWatch.
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
    Specialized logger for audit events.

    Records token issuance, scan verifications, product status changes
    and security-relevant actions.
    """

    def __init__(self, name: str = "qrseal.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        """Internal logging method with extra fields."""
        if not self._logger.isEnabledFor(level):
            return
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

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

    def token_issued(
        self,
        product_id: str,
        kid: str,
        alg: str,
        expires_at: Optional[int] = None
    ) -> None:
        """Log a token issuance."""
        self._log(
            logging.INFO,
            "TOKEN_ISSUED",
            product_id=product_id,
            kid=kid,
            alg=alg,
            expires_at=expires_at,
            message=f"Token issued for {product_id}"
        )

    def verification(
        self,
        product_id: Optional[str],
        valid: bool,
        reason: Optional[str] = None,
        risk: Optional[str] = None,
        scan_count: Optional[int] = None,
        client_ip: Optional[str] = None
    ) -> None:
        """Log a scan verification outcome."""
        level = logging.INFO if valid and risk != "high" else logging.WARNING
        outcome = "VALID" if valid else f"INVALID ({reason})"
        self._log(
            level,
            "VERIFICATION",
            product_id=product_id,
            valid=valid,
            reason=reason,
            risk=risk,
            scan_count=scan_count,
            client_ip=client_ip,
            message=f"Verification {outcome} for {product_id or 'unknown'}"
        )

    def product_status_changed(
        self,
        product_id: str,
        active: bool
    ) -> None:
        """Log activation or deactivation of a product."""
        state = "activated" if active else "deactivated"
        self._log(
            logging.WARNING if not active else logging.INFO,
            "PRODUCT_STATUS_CHANGED",
            product_id=product_id,
            is_active=active,
            message=f"Product {product_id} {state}"
        )

    def ledger_write_failure(
        self,
        product_id: str,
        error: str
    ) -> None:
        """Log a scan event that could not be persisted."""
        self._log(
            logging.ERROR,
            "LEDGER_WRITE_FAILURE",
            product_id=product_id,
            error=error,
            message=f"Scan event for {product_id} not recorded"
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

    def rate_limit_exceeded(
        self,
        client_id: str,
        endpoint: str
    ) -> None:
        """Log rate limit exceeded."""
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

    Args:
        request_id: Request ID to set, or None to generate one

    Returns:
        The request ID that was set
    """
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> str:
    """Get the current request ID."""
    return request_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
