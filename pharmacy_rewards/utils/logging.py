"""
Structured logging for the rewards pipeline.
"""

import logging
import json
from datetime import datetime, timezone
from typing import Optional
from pharmacy_rewards.config import get_config


config = get_config()


class StructuredFormatter(logging.Formatter):
    """Formats log records as structured JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra"):
            log_obj.update(record.extra)

        return json.dumps(log_obj, default=str)


def setup_logging(name: str = __name__) -> logging.Logger:
    """Setup and return a configured logger."""
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, config.LOG_LEVEL))

    if logger.handlers:
        return logger

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, config.LOG_LEVEL))
    console_formatter = logging.Formatter(config.LOG_FORMAT)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler with structured JSON
    if config.LOG_FILE:
        file_handler = logging.FileHandler(config.LOG_FILE)
        file_handler.setLevel(getattr(logging, config.LOG_LEVEL))
        file_handler.setFormatter(StructuredFormatter())
        logger.addHandler(file_handler)

    return logger


def log_agent_action(
    logger: logging.Logger,
    agent_name: str,
    action: str,
    details: Optional[dict] = None,
    scan_id: Optional[str] = None,
) -> None:
    """Log an agent action with context."""
    extra = {
        "agent": agent_name,
        "action": action,
    }
    if scan_id is not None:
        extra["scan_id"] = scan_id
    if details:
        extra.update(details)

    logger.info(
        f"[{agent_name}] {action}",
        extra={"extra": extra}
    )


def log_decision(
    logger: logging.Logger,
    scan_id: str,
    status: str,
    reason: Optional[str],
    check: Optional[str] = None,
) -> None:
    """Log a scan that stopped short of points (rejected or held for review)."""
    extra = {
        "type": "decision",
        "scan_id": scan_id,
        "status": status,
        "reason": reason,
        "check": check,
    }
    logger.warning(
        f"Scan {scan_id} {status}: {reason}",
        extra={"extra": extra}
    )
