"""
crossvest - Structured Logging Configuration

Every ledger module logs through ``logging.getLogger(__name__)`` and passes
structured fields with ``extra={"event": "vesting.<op>", ...}``. This module
turns those records into one JSON object per line, tagged with the network
and the ledger being operated on.

Usage:
    from crossvest.core.logging_config import setup_logging

    logger = setup_logging(
        name="crossvest",
        log_file="/var/log/crossvest/ledger.json",
        level="INFO",
        ledger_id="airdrop-2025",
    )
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

from .ledger_exceptions import ConfigurationError

LOG_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


def _resolve_level(level: str) -> int:
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ConfigurationError(f"Unknown log level: {level}", details={"level": level})
    return value


class LedgerContextFilter(logging.Filter):
    """Stamp every record with the ledger id unless the caller supplied one."""

    def __init__(self, ledger_id: Optional[str] = None):
        super().__init__()
        self.ledger_id = ledger_id

    def filter(self, record: logging.LogRecord) -> bool:
        if self.ledger_id is not None and not hasattr(record, "ledger_id"):
            record.ledger_id = self.ledger_id
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, environment, service and call site."""

    def __init__(self, environment: Optional[str] = None, service_name: str = "crossvest"):
        super().__init__(fmt=LOG_FORMAT)
        self.environment = environment or "localhost"
        self.service_name = service_name

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()
        if not log_record.get("level"):
            log_record["level"] = record.levelname.lower()

        log_record["environment"] = self.environment
        log_record["service"] = self.service_name
        log_record["source"] = {
            "function": record.funcName,
            "module": record.module,
            "line": record.lineno,
        }


def _attach(
    logger: logging.Logger,
    handler: logging.Handler,
    level: int,
    formatter: logging.Formatter,
    context: logging.Filter,
) -> None:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    handler.addFilter(context)
    logger.addHandler(handler)


def setup_logging(
    name: str = "crossvest",
    log_file: Optional[str] = None,
    level: str = "INFO",
    environment: str = "localhost",
    enable_console: bool = True,
    enable_file: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    stream=None,
    ledger_id: Optional[str] = None,
) -> logging.Logger:
    """
    Configure JSON logging for ``name``, replacing any handlers it already has.

    Args:
        name: Logger name (typically the package name)
        log_file: Path to JSON log file (optional)
        level: Logging level name
        environment: Network identifier (localhost, devnode, unique)
        enable_console: Whether to log to ``stream``
        enable_file: Whether to log to ``log_file``
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated files to keep
        stream: Console stream (defaults to stderr)
        ledger_id: Ledger id stamped on every record

    Raises:
        ConfigurationError: If ``level`` is not a logging level
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)
    logger.handlers = []

    formatter = CustomJsonFormatter(environment=environment, service_name=name.split(".")[0])
    context = LedgerContextFilter(ledger_id)

    if enable_console:
        _attach(logger, logging.StreamHandler(stream or sys.stderr), numeric_level, formatter, context)

    if enable_file and log_file:
        try:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                filename=log_file, maxBytes=max_bytes, backupCount=backup_count
            )
        except OSError as e:
            logger.warning("Could not create file handler for %s: %s", log_file, e)
        else:
            _attach(logger, handler, numeric_level, formatter, context)

    return logger


def get_logger(name: str, log_file: Optional[str] = None, level: str = "INFO") -> logging.Logger:
    """Return ``name``'s logger, configuring it only on first use."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    return setup_logging(name=name, log_file=log_file, level=level)
