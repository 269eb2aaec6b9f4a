"""
logging_config.py - Centralized JSON Logging Configuration

PURPOSE:
    Provides structured JSON logging for the inventory service and its Kafka
    workers, with timezone-aware timestamps, correlation tracking and
    service-specific context injection.

JSON LOG FIELDS:
    - timestamp: ISO 8601 timestamp in the configured timezone
    - level: Log level (INFO, ERROR, WARNING, DEBUG, CRITICAL)
    - logger: Module name where the log originated (e.g. "inventory_service.ledger")
    - message: The actual log message
    - service_name: Name of the service (injected automatically)
    - correlation_id: Optional tracing ID across service boundaries
    - event_type: Optional Kafka event type being processed
    - product_id / order_id: Optional inventory context passed via ``extra``
    - exception: Full stack trace (only when exc_info is set)

USAGE:
    from shared.logging_config import setup_logging
    setup_logging("inventory-service", level="INFO")

    logger = logging.getLogger(__name__)
    logger.info("Reserved stock", extra={"product_id": "PROD-1", "order_id": "ORD-1"})

EXAMPLE JSON OUTPUT:
    {
        "timestamp": "2026-02-23T22:48:51.001014+00:00",
        "level": "INFO",
        "logger": "inventory_service.ledger",
        "message": "Reserved 2 units of PROD-1 (available 8)",
        "service_name": "inventory-service",
        "product_id": "PROD-1"
    }
"""

import json
import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo
from typing import Any, Dict

# Optional record attributes copied into the JSON payload when present
CONTEXT_FIELDS = ("correlation_id", "service_name", "event_type", "product_id", "order_id")


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON logs with correlation context."""

    def __init__(self, timezone: str = "UTC"):
        super().__init__()
        self.tz = ZoneInfo(timezone)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, self.tz).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ServiceFilter(logging.Filter):
    """Injects service_name into every record passing through the handler."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        return True


def setup_logging(service_name: str, level: str = "INFO", timezone: str = "UTC") -> None:
    """Setup JSON logging for a service. Safe to call more than once."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(timezone))
    handler.addFilter(ServiceFilter(service_name))

    logger = logging.getLogger()
    logger.setLevel(level)

    # Replace handlers installed by a previous call instead of stacking them
    for existing in [h for h in logger.handlers if isinstance(h.formatter, JsonFormatter)]:
        logger.removeHandler(existing)
    logger.addHandler(handler)
