"""
Structured Logging Setup

Consistent logging configuration across all gateway components.
Uses JSON format for structured logs in production.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER_NAME = "fieldgate"

# Level names accepted on the command line and in the environment
LOG_LEVELS = ("off", "error", "warn", "warning", "info", "debug", "trace")

_RESERVED_ATTRS = (
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "service",
    "message", "taskName",
)


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def _numeric_level(log_level: str) -> int:
    name = log_level.lower()
    if name == "off":
        return logging.CRITICAL + 10
    if name == "warn":
        return logging.WARNING
    if name == "trace":
        return logging.DEBUG
    return getattr(logging, name.upper(), logging.INFO)


def setup_logging(
    log_level: str | None = None,
    json_format: bool | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """
    Configure the gateway's root logger.

    Called once by the entry point. Component loggers obtained through
    get_service_logger() propagate here.

    Args:
        log_level: off, error, warn, info, debug or trace
            (defaults to FIELDGATE_LOG_LEVEL, then "info")
        json_format: Use JSON format (defaults to FIELDGATE_LOG_FORMAT == "json")
        log_file: Write to this file instead of stdout

    Returns:
        Configured root logger
    """
    if log_level is None:
        log_level = os.environ.get("FIELDGATE_LOG_LEVEL", "info")
    if json_format is None:
        json_format = os.environ.get("FIELDGATE_LOG_FORMAT", "json").lower() == "json"

    numeric_level = _numeric_level(log_level)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Dotted component name (e.g., "polling.health")

    Returns:
        Logger adapter with service name in all logs
    """
    logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{service_name}")
    return ServiceLoggerAdapter(logger, {"service": service_name})


def log_register_read(
    logger: logging.Logger | logging.LoggerAdapter,
    device_name: str,
    register: str,
    value: Any,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a device register read operation"""
    if success:
        logger.debug(
            f"Read {device_name}.{register} = {value}",
            extra={"device": device_name, "register": register, "value": value},
        )
    else:
        logger.warning(
            f"Failed to read {device_name}.{register}: {error or 'unknown error'}",
            extra={"device": device_name, "register": register},
        )


def log_escalation(
    logger: logging.Logger | logging.LoggerAdapter,
    reason: str,
    counter: int | None = None,
    threshold: int | None = None,
) -> None:
    """Log a bus health escalation immediately before shutdown/reconnect"""
    if counter is not None and threshold is not None:
        message = f"Bus unhealthy: {reason} (fail_count={counter}, threshold={threshold})"
    else:
        message = f"Bus unhealthy: {reason}"

    logger.error(
        message,
        extra={"reason": reason, "fail_count": counter, "threshold": threshold},
    )
