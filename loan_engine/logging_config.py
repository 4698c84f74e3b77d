"""
Structured Logging Configuration Module

JSON (or plain text) logging for the loan engine. Lifecycle and repayment
modules log under ``loan_engine.<module>``; domain events are written to
``loan_engine.audit`` through log_action() with the event type as the action
and ``<entity_type>:<entity_id>`` as the resource.
"""

import logging
import json
from datetime import datetime, timezone
from typing import IO, Optional


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# Record attributes copied into the JSON document when present
STRUCTURED_FIELDS = ("correlation_id", "action", "resource", "extra")


class JSONFormatter(logging.Formatter):
    """Renders each record as one JSON document per line"""

    def __init__(self, service: str = "loan_engine"):
        super().__init__()
        self.service = service

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in STRUCTURED_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Decimals and dates in event data are written as strings
        return json.dumps(log_entry, default=str)


def setup_logging(level: str = "INFO", logger_name: str = "loan_engine",
                  log_format: str = "json", stream: Optional[IO] = None) -> logging.Logger:
    """
    Configure the engine's logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL);
            unknown names fall back to INFO
        logger_name: Logger to configure, normally the package root
        log_format: "json" for structured records, "text" for plain lines
        stream: Output stream, stderr when omitted

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(logger_name)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    if log_format == "text":
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    else:
        handler.setFormatter(JSONFormatter(service=logger_name))

    logger.addHandler(handler)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    return logger


def get_logger(name: str = "loan_engine") -> logging.Logger:
    """Get logger instance"""
    return logging.getLogger(name)


def log_action(logger: logging.Logger, level: str, message: str,
               action: Optional[str] = None, resource: Optional[str] = None,
               correlation_id: Optional[str] = None, extra: Optional[dict] = None):
    """
    Log an engine action with structured fields.

    Args:
        logger: Logger instance
        level: Level name (info, warning, error, ...)
        message: Human readable message
        action: Action performed, e.g. "loan.approved"
        resource: Affected record, e.g. "loan:<id>"
        correlation_id: Identifier tying related records together (event id)
        extra: Additional structured data, e.g. the event payload
    """
    levelno = getattr(logging, level.upper())
    if not logger.isEnabledFor(levelno):
        return

    fields = {
        "action": action,
        "resource": resource,
        "correlation_id": correlation_id,
        "extra": extra or None,
    }
    logger.log(levelno, message, extra={k: v for k, v in fields.items() if v is not None})
