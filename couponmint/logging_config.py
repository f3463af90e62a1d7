"""
Logging configuration for couponmint.

Provides structured JSON logging and a typed audit trail for every
state change of the issuance engine.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, List, Optional

# Context variable for request ID tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    One JSON object per line, suitable for log aggregation systems.
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

    Every committed mutation of the issuance engine and every rejected
    issuance attempt is recorded here.
    """

    def __init__(self, name: str = "couponmint.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, **kwargs) -> None:
        extra = {
            "event_type": event_type,
            "request_id": request_id_var.get(),
            **kwargs
        }

        # stacklevel 3 attributes the record to the code that called the
        # public event method, not to this class.
        self._logger.log(
            level,
            f"{event_type}: {kwargs.get('message', '')}",
            extra={"extra_fields": extra},
            stacklevel=3,
        )

    def phase_changed(self, previous: str, current: str, caller: str) -> None:
        self._log(
            logging.INFO,
            "PHASE_CHANGED",
            previous=previous,
            current=current,
            caller=caller,
            message=f"Phase changed from {previous} to {current}"
        )

    def price_changed(self, previous: int, current: int, caller: str) -> None:
        self._log(
            logging.INFO,
            "PRICE_CHANGED",
            previous=str(previous),
            current=str(current),
            caller=caller,
            message=f"Unit price set to {current}"
        )

    def royalty_changed(self, receiver: str, basis_points: int, caller: str) -> None:
        self._log(
            logging.INFO,
            "ROYALTY_CHANGED",
            receiver=receiver,
            basis_points=basis_points,
            caller=caller,
            message=f"Royalty set to {basis_points} bps for {receiver}"
        )

    def authority_changed(self, role: str, previous: str, current: str) -> None:
        self._log(
            logging.WARNING,
            "AUTHORITY_CHANGED",
            role=role,
            previous=previous,
            current=current,
            message=f"{role} changed from {previous} to {current}"
        )

    def units_issued(
        self,
        caller: str,
        unit_ids: List[int],
        payment: int,
        category: Optional[str] = None
    ) -> None:
        self._log(
            logging.INFO,
            "UNITS_ISSUED",
            caller=caller,
            unit_ids=unit_ids,
            quantity=len(unit_ids),
            payment=str(payment),
            category=category,
            message=f"Issued {len(unit_ids)} unit(s) to {caller}"
        )

    def issuance_rejected(self, caller: str, reason: str, quantity: Any = None) -> None:
        self._log(
            logging.WARNING,
            "ISSUANCE_REJECTED",
            caller=caller,
            reason=reason,
            quantity=quantity,
            message=f"Issuance rejected: {reason}"
        )

    def coupon_checked(self, beneficiary: str, category: str, valid: bool) -> None:
        level = logging.INFO if valid else logging.WARNING
        self._log(
            level,
            "COUPON_CHECKED",
            beneficiary=beneficiary,
            category=category,
            valid=valid,
            message=f"Coupon for {beneficiary} ({category}) {'accepted' if valid else 'rejected'}"
        )

    def withdrawal(
        self,
        index: int,
        balance: int,
        primary_amount: int,
        secondary_amount: int
    ) -> None:
        self._log(
            logging.INFO,
            "WITHDRAWAL",
            index=index,
            balance=str(balance),
            primary_amount=str(primary_amount),
            secondary_amount=str(secondary_amount),
            message=f"Splitter {index} distributed {balance}"
        )

    def withdrawal_failed(self, index: int, reason: str) -> None:
        self._log(
            logging.ERROR,
            "WITHDRAWAL_FAILED",
            index=index,
            reason=reason,
            message=f"Splitter {index} withdrawal failed: {reason}"
        )

    def proceeds_withdrawn(self, receiver: str, amount: int) -> None:
        self._log(
            logging.INFO,
            "PROCEEDS_WITHDRAWN",
            receiver=receiver,
            amount=str(amount),
            message=f"Issuance proceeds {amount} paid to {receiver}"
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
    root_logger.setLevel(getattr(logging, level.upper()))

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
