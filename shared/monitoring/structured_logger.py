"""
Structured Logging Module

Provides JSON-based structured logging for centralized log aggregation.
Carries request tracing plus the item/position being processed so a single
bad item can be traced through a batch.
"""

import logging
import sys
import traceback
from datetime import datetime
from typing import Dict, Any, Optional
from contextvars import ContextVar
from pathlib import Path
import os

from pythonjsonlogger import jsonlogger


# Context variables for request tracing
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
item_id_var: ContextVar[Optional[int]] = ContextVar('item_id', default=None)
position_id_var: ContextVar[Optional[str]] = ContextVar('position_id', default=None)


class ContextFilter(logging.Filter):
    """Filter that adds contextual information to log records"""

    def filter(self, record: logging.LogRecord) -> bool:
        """Add context variables to the log record"""
        # Values passed through ``extra`` win over the ambient context
        if getattr(record, 'request_id', None) is None:
            record.request_id = request_id_var.get()
        if getattr(record, 'item_id', None) is None:
            record.item_id = item_id_var.get()
        if getattr(record, 'position_id', None) is None:
            record.position_id = position_id_var.get()
        record.service_name = os.getenv('SERVICE_NAME', 'unknown')
        record.environment = os.getenv('ENVIRONMENT', 'development')
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with additional fields"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]):
        """Add custom fields to the log record"""
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat()
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['file'] = f"{record.filename}:{record.lineno}"
        log_record['function'] = record.funcName

        # Context from ContextFilter
        for key in ('request_id', 'item_id', 'position_id'):
            value = getattr(record, key, None)
            if value is not None:
                log_record[key] = value

        if hasattr(record, 'service_name'):
            log_record['service_name'] = record.service_name

        if hasattr(record, 'environment'):
            log_record['environment'] = record.environment

        if record.exc_info:
            log_record['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }


class StructuredLogger:
    """
    Structured logger with JSON output and contextual information

    Usage:
        logger = StructuredLogger.get_logger("market_analyzer")
        logger.info("Opportunity surfaced", extra={
            "item_id": 4151,
            "net_profit_gp": 42000,
        })
    """

    _loggers: Dict[str, logging.Logger] = {}

    @classmethod
    def get_logger(
        cls,
        name: str,
        level: int = logging.INFO,
        log_file: Optional[Path] = None,
        json_format: bool = True
    ) -> logging.Logger:
        """
        Get or create a structured logger

        Args:
            name: Logger name (typically service name)
            level: Logging level (default: INFO)
            log_file: Optional file path for file logging
            json_format: Use JSON format (default: True)

        Returns:
            Configured logger instance
        """
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers = []

        context_filter = ContextFilter()
        logger.addFilter(context_filter)

        if json_format:
            formatter = CustomJsonFormatter(
                '%(timestamp)s %(level)s %(service_name)s %(logger)s %(message)s'
            )
        else:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            )

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        console_handler.addFilter(context_filter)
        logger.addHandler(console_handler)

        if log_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(context_filter)
            logger.addHandler(file_handler)

        cls._loggers[name] = logger
        return logger

    @classmethod
    def set_context(
        cls,
        request_id: Optional[str] = None,
        item_id: Optional[int] = None,
        position_id: Optional[str] = None
    ):
        """Set context variables for request tracing"""
        if request_id:
            request_id_var.set(request_id)
        if item_id is not None:
            item_id_var.set(item_id)
        if position_id:
            position_id_var.set(position_id)

    @classmethod
    def clear_context(cls):
        """Clear context variables"""
        request_id_var.set(None)
        item_id_var.set(None)
        position_id_var.set(None)


def get_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    json_format: bool = True
) -> logging.Logger:
    """
    Convenience function to get a structured logger

    Example:
        logger = get_logger("risk_manager")
        logger.info("Stop-loss triggered", extra={"position_id": "p-1"})
    """
    return StructuredLogger.get_logger(name, level, log_file, json_format)


def setup_service_logger(
    service_name: str,
    level: str = "INFO",
    log_file: Optional[str] = None,
    json_format: bool = True
) -> logging.Logger:
    """
    Set up the root logger of a service package with standard configuration.

    The returned logger is named after the service package (e.g.
    ``services.market_analyzer``) so every module-level ``logging.getLogger(__name__)``
    inside that package propagates to it.

    Args:
        service_name: Dotted package name of the service
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        json_format: Use JSON format
    """
    os.environ['SERVICE_NAME'] = service_name.rsplit('.', 1)[-1]
    log_level = getattr(logging, level.upper(), logging.INFO)
    path = Path(log_file) if log_file else None
    return get_logger(service_name, log_level, path, json_format)


def log_business_event(logger: logging.Logger, event_type: str, **kwargs):
    """Log business events"""
    logger.info(
        f"Business Event: {event_type}",
        extra={
            "event_type": event_type,
            "metric_type": "business_event",
            **kwargs
        }
    )


def log_alert(logger: logging.Logger, alert_type: str, message: str, severity: str = "warning", **kwargs):
    """Log alerts that should trigger notifications"""
    log_level = logging.WARNING if severity.lower() in ("warning", "medium", "low") else logging.ERROR

    logger.log(
        log_level,
        f"ALERT [{alert_type}]: {message}",
        extra={
            "alert_type": alert_type,
            "severity": severity,
            "metric_type": "alert",
            **kwargs
        }
    )
