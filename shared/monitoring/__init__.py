"""
Monitoring Module

Structured JSON logging shared by the market analyzer and risk manager
services.
"""

from .structured_logger import (
    StructuredLogger,
    get_logger,
    setup_service_logger,
    log_business_event,
    log_alert,
)

__all__ = [
    "StructuredLogger",
    "get_logger",
    "setup_service_logger",
    "log_business_event",
    "log_alert",
]
