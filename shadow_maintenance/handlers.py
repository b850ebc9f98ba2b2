"""
Lambda Handlers for Shadow Maintenance

``worker_handler`` processes one scan segment; ``coordinator_handler``
validates a request and starts the Step Functions execution. Settings and
boto3 clients are created once per process and reused by warm invocations.
"""

import logging
from typing import Any, Dict, Optional

from shadow_maintenance.config import (
    ClientFactory,
    ConfigurationError,
    CoordinatorSettings,
    WorkerSettings,
)
from shadow_maintenance.coordinator import (
    CoordinatorError,
    MaintenanceCoordinator,
    StepFunctionsDispatcher,
)
from shadow_maintenance.monitoring.metrics import MaintenanceMetrics
from shadow_maintenance.reconciliation.worker import SegmentWorker, WorkerRequest
from shadow_maintenance.storage.dynamodb import DynamoDBShadowTable
from shadow_maintenance.utils.correlation import attach_run_id, extract_run_id
from shadow_maintenance.utils.structured_logging import configure_logging

logger = logging.getLogger(__name__)

_client_factory = ClientFactory()
_worker_settings: Optional[WorkerSettings] = None
_coordinator_settings: Optional[CoordinatorSettings] = None
_logging_configured = False


def reset(client_factory: Optional[ClientFactory] = None) -> None:
    """Drop cached settings and clients; optionally install a client factory."""
    global _client_factory, _worker_settings, _coordinator_settings
    _client_factory = client_factory or ClientFactory()
    _worker_settings = None
    _coordinator_settings = None


def _ensure_logging() -> None:
    global _logging_configured
    if not _logging_configured:
        configure_logging(json_output=True)
        _logging_configured = True


def get_worker_settings() -> WorkerSettings:
    global _worker_settings
    if _worker_settings is None:
        _worker_settings = WorkerSettings.from_env()
    return _worker_settings


def get_coordinator_settings() -> CoordinatorSettings:
    global _coordinator_settings
    if _coordinator_settings is None:
        _coordinator_settings = CoordinatorSettings.from_env()
    return _coordinator_settings


def worker_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """
    Process one segment of a maintenance run.

    Args:
        event: Worker payload (resource, segment, totalSegments, dryRun,
            pageLimit, runId)
        context: Lambda context (unused)

    Returns:
        Per-segment result dict

    Raises:
        WorkerInputError: If the payload is malformed
        ConfigurationError: If deployment configuration is invalid
        StorageError: If the segment scan fails
    """
    _ensure_logging()

    if isinstance(event, dict):
        event = attach_run_id(dict(event), extract_run_id(event))
    request = WorkerRequest.from_event(event)

    settings = get_worker_settings()
    table = DynamoDBShadowTable(
        _client_factory.dynamodb(settings.region),
        settings.table_name,
        page_size=settings.scan_page_size
    )
    metrics = MaintenanceMetrics()
    worker = SegmentWorker(table, settings.shadow_config, metrics)

    try:
        result = worker.run(request)
    finally:
        if settings.pushgateway_url:
            metrics.push(
                settings.pushgateway_url,
                job_name="shadow_maintenance_worker",
                grouping_key={
                    "env": settings.env,
                    "resource": request.resource,
                    "segment": str(request.segment),
                }
            )

    return result.to_dict()


def coordinator_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, str]:
    """
    Start a maintenance run.

    Returns:
        ``{"executionArn": ..., "startDate": ...}``

    Raises:
        CoordinatorError: With message ``"<CODE>: <detail>"``
    """
    _ensure_logging()
    logger.info("Maintenance coordinator invoked", extra={"resource": _resource_of(event)})

    try:
        settings = get_coordinator_settings()
        dispatcher = StepFunctionsDispatcher(
            _client_factory.stepfunctions(settings.region),
            settings.state_machine_arn
        )
        coordinator = MaintenanceCoordinator(settings.allowed_resources, dispatcher)
        return coordinator.start(event).to_dict()
    except (CoordinatorError, ConfigurationError) as e:
        logger.error(f"Maintenance coordinator failed: {e}", extra={"error_code": e.code})
        raise CoordinatorError(f"{e.code}: {e}", code=e.code) from e


def _resource_of(event: Any) -> Optional[str]:
    return event.get("resource") if isinstance(event, dict) else None
