"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "airtime-advance"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = SERVICE_NAME


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_eligibility(
    msisdn: str,
    approved: bool,
    reason: Optional[str],
    amount_cents: Optional[int],
    decision_id: Optional[str],
) -> None:
    """Log structured eligibility outcome for analysis"""
    logging.getLogger("airtime_advance.decisions").info(
        "Eligibility evaluated",
        extra={
            "msisdn": msisdn,
            "step": "eligibility_complete",
            "approval_outcome": "approved" if approved else "declined",
            "rejection_reason": reason,
            "amount_cents": amount_cents,
            "decision_id": decision_id,
        },
    )


def log_settlement(step: str, msisdn: str, loan_id: str, amount_cents: int, **fields: Any) -> None:
    """Log a disbursal or repayment step"""
    logging.getLogger("airtime_advance.settlement").info(
        "Settlement step",
        extra={"msisdn": msisdn, "step": step, "loan_id": loan_id, "amount_cents": amount_cents, **fields},
    )
