"""
Scan Coordinator for Shadow Maintenance

Validates a maintenance request, names the run, and fans it out into one
worker payload per scan segment. Payloads are handed to a dispatcher:
Step Functions in deployed environments, a local thread pool for ad-hoc
runs from the CLI.
"""

import json
import logging
import secrets
import string
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from shadow_maintenance.config import DEFAULT_DRY_RUN, DEFAULT_PAGE_LIMIT, DEFAULT_SEGMENTS
from shadow_maintenance.monitoring.metrics import MaintenanceMetrics
from shadow_maintenance.reconciliation.worker import SegmentWorker, WorkerRequest, WorkerState
from shadow_maintenance.shadows.schema import ShadowConfig
from shadow_maintenance.storage.base import ShadowTable
from shadow_maintenance.utils.correlation import attach_run_id, generate_correlation_id

logger = logging.getLogger(__name__)

EXECUTION_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
EXECUTION_SUFFIX_LENGTH = 6

COUNTER_FIELDS = ("scanned", "drifted", "repaired", "failed", "noop", "pages")


class CoordinatorError(Exception):
    """Base class for coordinator errors."""

    code = "SFN_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        if code:
            self.code = code


class InvalidInputError(CoordinatorError):
    """Raised when a maintenance request is malformed."""

    code = "INVALID_INPUT"


class ResourceNotAllowedError(CoordinatorError):
    """Raised when a request names a resource outside the allow-list."""

    code = "RESOURCE_NOT_ALLOWED"


class DispatchError(CoordinatorError):
    """Raised when the run cannot be started."""

    code = "SFN_ERROR"


@dataclass(frozen=True)
class MaintenanceRequest:
    """Validated coordinator input with defaults applied."""

    resource: str
    segments: int = DEFAULT_SEGMENTS
    dry_run: bool = DEFAULT_DRY_RUN
    page_limit: int = DEFAULT_PAGE_LIMIT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource": self.resource,
            "segments": self.segments,
            "dryRun": self.dry_run,
            "pageLimit": self.page_limit,
        }


@dataclass(frozen=True)
class DispatchReceipt:
    """Identifier and start time of a dispatched run."""

    execution_id: str
    started_at: str

    def to_dict(self) -> Dict[str, str]:
        return {"executionArn": self.execution_id, "startDate": self.started_at}


def _positive_int(event: Dict[str, Any], name: str, default: int) -> int:
    value = event.get(name)
    if value is None:
        return default
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidInputError(f"Invalid input: {name} must be a positive integer")
    return value


def validate_request(event: Dict[str, Any], allowed_resources: Iterable[str]) -> MaintenanceRequest:
    """
    Validate a coordinator event and apply defaults.

    Args:
        event: Raw event with resource and optional segments, dryRun, pageLimit
        allowed_resources: Resources maintenance may run on

    Returns:
        MaintenanceRequest

    Raises:
        InvalidInputError: If a field is missing or has the wrong type
        ResourceNotAllowedError: If the resource is not allowed
    """
    if not isinstance(event, dict):
        raise InvalidInputError("Invalid input: event must be an object")

    resource = event.get("resource")
    if not isinstance(resource, str) or not resource:
        raise InvalidInputError("Invalid input: resource is required and must be a string")

    allowed = set(allowed_resources)
    if resource not in allowed:
        raise ResourceNotAllowedError(
            f"Resource not allowed: {resource}. "
            f"Allowed resources: {', '.join(sorted(allowed))}"
        )

    segments = _positive_int(event, "segments", DEFAULT_SEGMENTS)
    page_limit = _positive_int(event, "pageLimit", DEFAULT_PAGE_LIMIT)

    dry_run = event.get("dryRun")
    if dry_run is None:
        dry_run = DEFAULT_DRY_RUN
    elif not isinstance(dry_run, bool):
        raise InvalidInputError("Invalid input: dryRun must be a boolean")

    return MaintenanceRequest(
        resource=resource,
        segments=segments,
        dry_run=dry_run,
        page_limit=page_limit,
    )


def generate_execution_name(resource: str) -> str:
    """Execution name of the form ``<resource>-<epoch ms>-<6 random chars>``."""
    suffix = "".join(
        secrets.choice(EXECUTION_SUFFIX_ALPHABET) for _ in range(EXECUTION_SUFFIX_LENGTH)
    )
    return f"{resource}-{int(time.time() * 1000)}-{suffix}"


def build_segment_payloads(
    request: MaintenanceRequest,
    execution_name: str,
    run_id: str
) -> List[Dict[str, Any]]:
    """One worker payload per segment, all sharing the run id."""
    payloads = []
    for segment in range(request.segments):
        payload = {
            "name": f"{execution_name}-seg-{segment}",
            "resource": request.resource,
            "segment": segment,
            "totalSegments": request.segments,
            "dryRun": request.dry_run,
            "pageLimit": request.page_limit,
        }
        payloads.append(attach_run_id(payload, run_id))
    return payloads


class StepFunctionsDispatcher:
    """Starts a Step Functions execution that fans out over the segment payloads."""

    def __init__(self, client, state_machine_arn: str):
        """
        Initialize the dispatcher.

        Args:
            client: boto3 ``stepfunctions`` client
            state_machine_arn: State machine running the segment workers
        """
        self.client = client
        self.state_machine_arn = state_machine_arn

    def dispatch(
        self,
        execution_name: str,
        request: MaintenanceRequest,
        payloads: List[Dict[str, Any]]
    ) -> DispatchReceipt:
        """
        Start the execution.

        Raises:
            DispatchError: If Step Functions rejects the request
        """
        execution_input = {
            **request.to_dict(),
            "runId": payloads[0]["runId"] if payloads else None,
            "workers": payloads,
        }

        try:
            response = self.client.start_execution(
                stateMachineArn=self.state_machine_arn,
                name=execution_name,
                input=json.dumps(execution_input),
            )
        except (ClientError, BotoCoreError) as e:
            raise DispatchError(f"Failed to start Step Functions execution: {e}") from e

        execution_arn = response.get("executionArn")
        start_date = response.get("startDate")
        if not execution_arn or not start_date:
            raise DispatchError("Step Functions execution response is missing required fields")

        if isinstance(start_date, datetime):
            start_date = start_date.astimezone(timezone.utc).isoformat()

        return DispatchReceipt(execution_id=execution_arn, started_at=str(start_date))


class LocalDispatcher:
    """
    Runs segment workers in a local thread pool.

    Each dispatch returns immediately; ``wait`` blocks until every segment
    of an execution has finished and returns the per-segment results.

    Every dispatched execution must be collected with ``wait`` exactly once.
    Futures are held until then; ``wait`` releases them, after which the
    execution id is unknown.
    """

    def __init__(
        self,
        table: ShadowTable,
        config: ShadowConfig,
        metrics: Optional[MaintenanceMetrics] = None,
        max_workers: Optional[int] = None
    ):
        self.table = table
        self.config = config
        self.metrics = metrics
        self.max_workers = max_workers
        self._executions: Dict[str, List[Future]] = {}
        self._lock = threading.Lock()

    def dispatch(
        self,
        execution_name: str,
        request: MaintenanceRequest,
        payloads: List[Dict[str, Any]]
    ) -> DispatchReceipt:
        execution_id = f"local:{execution_name}"
        executor = ThreadPoolExecutor(
            max_workers=self.max_workers or max(len(payloads), 1),
            thread_name_prefix=execution_name
        )
        futures = [executor.submit(self._run_segment, payload) for payload in payloads]
        executor.shutdown(wait=False)

        with self._lock:
            self._executions[execution_id] = futures

        logger.info(f"Dispatched {len(payloads)} local segment workers for {execution_id}")
        return DispatchReceipt(
            execution_id=execution_id,
            started_at=datetime.now(timezone.utc).isoformat(),
        )

    def _run_segment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        worker = SegmentWorker(self.table, self.config, self.metrics)
        return worker.run(WorkerRequest.from_event(payload)).to_dict()

    def wait(self, execution_id: str, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """
        Wait for all segments of an execution.

        A segment that raised is reported with status ``failed`` and the
        error instead of counters.

        Raises:
            KeyError: If the execution is unknown
        """
        with self._lock:
            futures = self._executions.pop(execution_id)

        wait_futures(futures, timeout=timeout)

        results = []
        for segment, future in enumerate(futures):
            error = future.exception() if future.done() else TimeoutError("Segment still running")
            if error is None:
                results.append(future.result())
                continue
            results.append({
                "segment": segment,
                "status": WorkerState.FAILED.value,
                "errors": [{
                    "id": "",
                    "code": getattr(error, "code", type(error).__name__),
                    "message": str(error),
                }],
            })
        return results


class MaintenanceCoordinator:
    """Entry point for starting maintenance runs."""

    def __init__(
        self,
        allowed_resources: Iterable[str],
        dispatcher,
        metrics: Optional[MaintenanceMetrics] = None
    ):
        """
        Initialize the coordinator.

        Args:
            allowed_resources: Resources maintenance may run on
            dispatcher: StepFunctionsDispatcher or LocalDispatcher
            metrics: Optional metrics sink
        """
        self.allowed_resources = frozenset(allowed_resources)
        self.dispatcher = dispatcher
        self.metrics = metrics

    def start(self, event: Dict[str, Any]) -> DispatchReceipt:
        """
        Validate the event and dispatch a run.

        Returns:
            DispatchReceipt of the started run

        Raises:
            CoordinatorError: If validation or dispatch fails
        """
        resource = event.get("resource") if isinstance(event, dict) else None
        try:
            request = validate_request(event, self.allowed_resources)

            execution_name = generate_execution_name(request.resource)
            run_id = generate_correlation_id()
            payloads = build_segment_payloads(request, execution_name, run_id)

            logger.info(
                f"Starting maintenance run {execution_name} "
                f"({request.segments} segments, dry_run={request.dry_run}, "
                f"page_limit={request.page_limit})",
                extra={"resource": request.resource, "execution_name": execution_name,
                       "total_segments": request.segments, "dry_run": request.dry_run}
            )

            receipt = self.dispatcher.dispatch(execution_name, request, payloads)

        except CoordinatorError as e:
            if self.metrics:
                self.metrics.record_coordinator_run(str(resource or ""), e.code)
            logger.error(f"Failed to start maintenance run: {e}", extra={"error_code": e.code})
            raise

        if self.metrics:
            self.metrics.record_coordinator_run(request.resource, "started")

        logger.info(f"Maintenance run started: {receipt.execution_id} at {receipt.started_at}")
        return receipt


def aggregate_results(results: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Sum per-segment worker results into run totals.

    Returns:
        Dict with summed counters, concatenated errors, the number of
        segments and the segments that did not finish
    """
    summary: Dict[str, Any] = {name: 0 for name in COUNTER_FIELDS}
    summary["errors"] = []
    summary["segments"] = len(results)
    summary["incomplete_segments"] = []

    for result in results:
        for name in COUNTER_FIELDS:
            summary[name] += result.get(name, 0)
        summary["errors"].extend(result.get("errors", []))
        if result.get("status", WorkerState.DONE.value) != WorkerState.DONE.value:
            summary["incomplete_segments"].append(result.get("segment"))

    summary["complete"] = not summary["incomplete_segments"]
    return summary
