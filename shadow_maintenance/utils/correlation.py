"""
Correlation ID Utility for Shadow Maintenance

Every maintenance run carries a run id that the coordinator hands to each
segment worker. The run id is kept in a context variable so every log line
emitted while processing a segment can be traced back to its run.
"""

import uuid
import contextvars
from typing import Optional
import logging

logger = logging.getLogger(__name__)

RUN_ID_KEY = "runId"

# Context variable for correlation ID
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id',
    default=None
)


def generate_correlation_id() -> str:
    """
    Generate a new correlation ID using UUID4.

    Returns:
        String representation of a UUID4
    """
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


class CorrelationContext:
    """
    Context manager binding a run id to the current context.

    A new id is generated when none is given; the previous id is restored
    on exit.
    """

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id
        self._token = None

    def __enter__(self) -> str:
        if not self.correlation_id:
            self.correlation_id = generate_correlation_id()

        if not isinstance(self.correlation_id, str):
            raise ValueError("Correlation ID must be a non-empty string")

        self._token = _correlation_id.set(self.correlation_id)
        logger.debug(f"Entered correlation context: {self.correlation_id}")
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        _correlation_id.reset(self._token)
        self._token = None


def correlation_id_filter(record):
    """
    Logging filter to add correlation ID to log records.

    Returns:
        True (always allow record)
    """
    record.correlation_id = get_correlation_id() or "N/A"
    return True


def setup_correlation_logging(handler: logging.Handler) -> None:
    """Attach the correlation ID filter to a handler."""
    handler.addFilter(correlation_id_filter)


def extract_run_id(event: dict) -> Optional[str]:
    """
    Extract the run id from a worker or coordinator event.

    Looks at ``runId`` first, then ``correlation_id`` at the top level or
    under ``headers``.
    """
    if not isinstance(event, dict):
        return None

    run_id = event.get(RUN_ID_KEY) or event.get("correlation_id")

    if not run_id and isinstance(event.get("headers"), dict):
        run_id = event["headers"].get("correlation_id")

    return run_id if isinstance(run_id, str) and run_id else None


def attach_run_id(payload: dict, run_id: Optional[str] = None) -> dict:
    """
    Attach a run id to a worker payload.

    Uses the given id, else the id in context, else a new one.

    Raises:
        ValueError: If payload is not a dictionary
    """
    if not isinstance(payload, dict):
        raise ValueError("Payload must be a dictionary")

    payload[RUN_ID_KEY] = run_id or get_correlation_id() or generate_correlation_id()
    return payload
