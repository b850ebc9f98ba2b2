"""
Structured Logging for Shadow Maintenance

JSON log lines with run correlation ids, used by the Lambda handlers and
optionally by the CLI.
"""

import json
import logging
import os
from datetime import datetime, timezone
from typing import Optional

from shadow_maintenance.utils.correlation import setup_correlation_logging

# Extra attributes copied into the JSON payload when present on a record
EXTRA_FIELDS = (
    "resource",
    "segment",
    "total_segments",
    "record_id",
    "reason",
    "error_code",
    "dry_run",
    "execution_name",
    "duration",
    "stats",
)


class StructuredJSONFormatter(logging.Formatter):
    """JSON formatter with correlation ID support."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'correlation_id': getattr(record, 'correlation_id', 'N/A'),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(
    level: int = logging.INFO,
    json_output: Optional[bool] = None,
    logger_name: str = "shadow_maintenance"
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Log level
        json_output: JSON lines if True, human-readable if False;
            defaults to the JSON_LOGGING environment variable
        logger_name: Logger to configure

    Returns:
        The configured logger
    """
    if json_output is None:
        json_output = os.getenv('JSON_LOGGING', 'false').lower() == 'true'

    handler = logging.StreamHandler()
    setup_correlation_logging(handler)

    if json_output:
        handler.setFormatter(StructuredJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(correlation_id)s] %(name)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    target = logging.getLogger(logger_name)
    target.handlers = [handler]
    target.setLevel(level)
    target.propagate = False

    return target
