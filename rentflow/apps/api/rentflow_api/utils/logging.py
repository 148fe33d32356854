"""Structured JSON logging utilities.

- JSON format for log aggregation
- Includes request_id plus lease/payment/tenant identifiers from context
- Standard fields: timestamp, level, message, module, func, line
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from rentflow_api.context import (
    lease_id_var,
    payment_id_var,
    request_id_var,
    tenant_id_var,
)
from rentflow_api.utils.sanitize import sanitize_exc, sanitize_obj, sanitize_str

_CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("lease_id", lease_id_var),
    ("payment_id", payment_id_var),
    ("tenant_id", tenant_id_var),
)

_RESERVED_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
})


class JSONFormatter(logging.Formatter):
    """JSON log formatter with request and settlement context.

    Formats log records as JSON with standard fields:
    - timestamp: ISO 8601 UTC
    - level: log level (INFO, ERROR, etc.)
    - message: log message
    - module, func, line: call site
    - request_id, lease_id, payment_id, tenant_id: from context variables
      (omitted when unset, e.g. in the reaper)

    Fields passed through ``extra={...}`` are merged in after sanitizing.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "message": sanitize_str(record.getMessage()),
            "module": record.module,
            "func": record.funcName,
            "line": record.lineno,
        }

        for field, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_data[field] = value

        if record.exc_info:
            log_data["exc_info"] = sanitize_exc(record.exc_info)

        # Sanitized as one dict so sensitive top-level keys are redacted too
        extras = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}
        log_data.update(sanitize_obj(extras))

        return json.dumps(log_data, default=str)


def configure_json_logging(log_level: str = "INFO") -> None:
    """Configure root logger with JSON formatter.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
