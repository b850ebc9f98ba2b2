"""
Segment Worker for Shadow Maintenance

Owns one segment of a parallel table scan: pages through the primary
records of a resource, detects shadow drift and, unless in dry-run mode,
repairs each drifted record in its own transaction.

States: SCANNING -> DONE | LIMIT_REACHED | FAILED
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from shadow_maintenance.monitoring.metrics import MaintenanceMetrics
from shadow_maintenance.reconciliation.detector import DriftDetector, record_id_of
from shadow_maintenance.reconciliation.repairer import RepairError, ShadowRepairer
from shadow_maintenance.shadows.fingerprint import ConfigFingerprint
from shadow_maintenance.shadows.generator import ShadowGenerationError
from shadow_maintenance.shadows.schema import PRIMARY_KEY_PREFIX, ShadowConfig
from shadow_maintenance.storage.base import ShadowTable, TransactionError
from shadow_maintenance.utils.correlation import CorrelationContext

logger = logging.getLogger(__name__)

# Per-record failures; anything else aborts the segment
RECORD_ERRORS = (ShadowGenerationError, RepairError, TransactionError)


class WorkerInputError(ValueError):
    """Raised when a worker event is malformed."""

    code = "INVALID_INPUT"


class WorkerState(Enum):
    """Segment worker states."""
    SCANNING = "scanning"
    DONE = "done"
    LIMIT_REACHED = "limit_reached"
    FAILED = "failed"


@dataclass(frozen=True)
class WorkerRequest:
    """Validated worker invocation input."""

    resource: str
    segment: int
    total_segments: int
    dry_run: bool
    page_limit: int
    run_id: str

    @classmethod
    def from_event(cls, event: Dict[str, Any]) -> "WorkerRequest":
        """
        Parse a worker event.

        Raises:
            WorkerInputError: If a field is missing or has the wrong type
        """
        if not isinstance(event, dict):
            raise WorkerInputError("Worker event must be an object")

        resource = event.get("resource")
        if not isinstance(resource, str) or not resource:
            raise WorkerInputError("resource is required and must be a string")

        segment = event.get("segment")
        total_segments = event.get("totalSegments")
        page_limit = event.get("pageLimit")
        for name, value in (("segment", segment), ("totalSegments", total_segments),
                            ("pageLimit", page_limit)):
            if isinstance(value, bool) or not isinstance(value, int):
                raise WorkerInputError(f"{name} is required and must be an integer")

        if total_segments <= 0:
            raise WorkerInputError("totalSegments must be a positive integer")
        if not 0 <= segment < total_segments:
            raise WorkerInputError(
                f"segment must be between 0 and {total_segments - 1}, got {segment}"
            )
        if page_limit <= 0:
            raise WorkerInputError("pageLimit must be a positive integer")

        dry_run = event.get("dryRun")
        if not isinstance(dry_run, bool):
            raise WorkerInputError("dryRun is required and must be a boolean")

        run_id = event.get("runId")
        if not isinstance(run_id, str) or not run_id:
            raise WorkerInputError("runId is required and must be a string")

        return cls(
            resource=resource,
            segment=segment,
            total_segments=total_segments,
            dry_run=dry_run,
            page_limit=page_limit,
            run_id=run_id,
        )


@dataclass
class WorkerResult:
    """Per-segment counters and errors."""

    segment: int
    scanned: int = 0
    drifted: int = 0
    repaired: int = 0
    failed: int = 0
    noop: int = 0
    pages: int = 0
    status: WorkerState = WorkerState.SCANNING
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "segment": self.segment,
            "scanned": self.scanned,
            "drifted": self.drifted,
            "repaired": self.repaired,
            "failed": self.failed,
            "noop": self.noop,
            "errors": list(self.errors),
            "pages": self.pages,
            "status": self.status.value,
        }


class SegmentWorker:
    """
    Scans one segment of a resource and repairs shadow drift.

    Workers share no state; parallel runs rely on the storage layer's
    guarantee that segments are disjoint.
    """

    def __init__(
        self,
        table: ShadowTable,
        config: ShadowConfig,
        metrics: Optional[MaintenanceMetrics] = None
    ):
        """
        Initialize the segment worker.

        Args:
            table: Table holding primary and shadow records
            config: Loaded shadow config
            metrics: Optional metrics sink
        """
        self.table = table
        self.config = config
        self.fingerprint = ConfigFingerprint.of(config)
        self.metrics = metrics
        self.detector = DriftDetector()
        self.repairer = ShadowRepairer(table)

        logger.info(
            f"SegmentWorker initialized with shadow config "
            f"version={self.fingerprint.version} hash={self.fingerprint.hash}"
        )

    def run(self, request: WorkerRequest) -> WorkerResult:
        """
        Process the request's segment.

        Args:
            request: Validated worker request

        Returns:
            WorkerResult with counters for the processed pages

        Raises:
            ShadowConfigError: If the resource is not in the shadow config
            StorageError: If a scan page cannot be fetched
        """
        schema = self.config.get_resource(request.resource)
        result = WorkerResult(segment=request.segment)
        start_time = time.monotonic()

        with CorrelationContext(request.run_id):
            logger.info(
                f"Starting segment {request.segment}/{request.total_segments} "
                f"of {request.resource} (dry_run={request.dry_run}, "
                f"page_limit={request.page_limit})",
                extra={"resource": request.resource, "segment": request.segment,
                       "dry_run": request.dry_run}
            )

            try:
                start_key = None
                while True:
                    if result.pages >= request.page_limit:
                        result.status = WorkerState.LIMIT_REACHED
                        logger.info(f"Page limit reached after {result.pages} pages")
                        break

                    page = self.table.scan_page(
                        request.resource,
                        request.segment,
                        request.total_segments,
                        start_key=start_key
                    )
                    result.pages += 1

                    for record in page.items:
                        self._process_record(record, schema, request, result)

                    if self.metrics:
                        self.metrics.record_page(request.resource, len(page.items))

                    if not page.has_more:
                        result.status = WorkerState.DONE
                        break

                    start_key = page.last_evaluated_key

            except Exception:
                result.status = WorkerState.FAILED
                logger.error(
                    f"Segment {request.segment} of {request.resource} failed "
                    f"after {result.pages} pages",
                    exc_info=True
                )
                raise
            finally:
                duration = time.monotonic() - start_time
                if self.metrics:
                    self.metrics.record_worker_run(
                        request.resource, result.status.value, duration
                    )

            logger.info(
                f"Segment {request.segment} of {request.resource} finished: "
                f"scanned={result.scanned}, drifted={result.drifted}, "
                f"repaired={result.repaired}, failed={result.failed}, noop={result.noop}",
                extra={"resource": request.resource, "segment": request.segment,
                       "duration": round(duration, 3), "stats": result.to_dict()}
            )

        return result

    def _process_record(self, record, schema, request, result) -> None:
        result.scanned += 1
        record_id = str(record.get("SK", "")).replace(PRIMARY_KEY_PREFIX, "", 1)

        try:
            record_id = record_id_of(record)
            drift = self.detector.detect(record, schema, self.fingerprint.hash)

            if not drift.has_drift:
                result.noop += 1
                return

            result.drifted += 1
            if self.metrics:
                self.metrics.record_drift(request.resource, drift.reason.value)

            logger.info(
                f"Shadow drift detected on {record_id} ({drift.reason.value}): "
                f"expected={drift.expected_keys} actual={drift.actual_keys}",
                extra={"record_id": record_id, "reason": drift.reason.value}
            )

            if request.dry_run:
                return

            self.repairer.repair(
                record,
                drift.expected_keys,
                drift.actual_keys,
                self.fingerprint.version,
                self.fingerprint.hash,
                schema
            )
            result.repaired += 1
            if self.metrics:
                self.metrics.record_repair(request.resource, "success")

        except RECORD_ERRORS as e:
            result.failed += 1
            result.errors.append({"id": record_id, "code": e.code, "message": str(e)})
            if self.metrics:
                self.metrics.record_repair(request.resource, "failure", e.code)

            logger.error(
                f"Failed to repair record {record_id}: {e}",
                extra={"record_id": record_id, "error_code": e.code}
            )
