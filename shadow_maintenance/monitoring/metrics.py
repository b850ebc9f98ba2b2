"""
Prometheus Metrics for Shadow Maintenance

Tracks scan progress, drift and repair outcomes of maintenance workers and
the runs started by the coordinator. Workers run in short-lived processes,
so metrics live in their own registry and can be pushed to a Pushgateway.
"""

import logging
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, push_to_gateway

logger = logging.getLogger(__name__)


class MaintenanceMetrics:
    """Prometheus metrics for shadow maintenance runs."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """
        Initialize maintenance metrics.

        Args:
            registry: Prometheus registry (a fresh one if not provided)
        """
        self.registry = registry or CollectorRegistry()

        # Worker invocations
        self.worker_runs_total = Counter(
            'shadow_maintenance_worker_runs_total',
            'Total number of segment worker runs',
            ['resource', 'status'],
            registry=self.registry
        )

        self.worker_duration_seconds = Histogram(
            'shadow_maintenance_worker_duration_seconds',
            'Duration of segment worker runs in seconds',
            ['resource'],
            buckets=[1, 5, 10, 30, 60, 120, 300, 600, 900],
            registry=self.registry
        )

        # Scan progress
        self.pages_scanned_total = Counter(
            'shadow_maintenance_pages_scanned_total',
            'Total scan pages processed',
            ['resource'],
            registry=self.registry
        )

        self.records_scanned_total = Counter(
            'shadow_maintenance_records_scanned_total',
            'Total primary records scanned',
            ['resource'],
            registry=self.registry
        )

        # Drift and repair
        self.drift_detected_total = Counter(
            'shadow_maintenance_drift_detected_total',
            'Total drifted records by reason',
            ['resource', 'reason'],
            registry=self.registry
        )

        self.repairs_total = Counter(
            'shadow_maintenance_repairs_total',
            'Total repair transactions by outcome',
            ['resource', 'status', 'code'],
            registry=self.registry
        )

        # Coordinator
        self.coordinator_runs_total = Counter(
            'shadow_maintenance_coordinator_runs_total',
            'Total maintenance runs requested from the coordinator',
            ['resource', 'status'],
            registry=self.registry
        )

        logger.debug("MaintenanceMetrics initialized")

    def record_page(self, resource: str, record_count: int) -> None:
        """Record one processed scan page."""
        self.pages_scanned_total.labels(resource=resource).inc()
        self.records_scanned_total.labels(resource=resource).inc(record_count)

    def record_drift(self, resource: str, reason: str) -> None:
        """Record a drifted record."""
        self.drift_detected_total.labels(resource=resource, reason=reason).inc()

    def record_repair(self, resource: str, status: str, code: str = "") -> None:
        """
        Record a repair outcome.

        Args:
            resource: Resource name
            status: success/failure
            code: Error code for failures
        """
        self.repairs_total.labels(resource=resource, status=status, code=code).inc()

    def record_worker_run(self, resource: str, status: str, duration_seconds: float) -> None:
        """
        Record a finished worker run.

        Args:
            resource: Resource name
            status: Terminal worker state (done/limit_reached/failed)
            duration_seconds: Wall-clock duration of the run
        """
        self.worker_runs_total.labels(resource=resource, status=status).inc()
        self.worker_duration_seconds.labels(resource=resource).observe(duration_seconds)

        logger.debug(
            f"Recorded worker run metrics for {resource}: "
            f"status={status}, duration={duration_seconds:.3f}s"
        )

    def record_coordinator_run(self, resource: str, status: str) -> None:
        """Record a coordinator request (started or an error code)."""
        self.coordinator_runs_total.labels(resource=resource, status=status).inc()

    def push(
        self,
        gateway_url: str,
        job_name: str = "shadow_maintenance",
        grouping_key: Optional[Dict[str, str]] = None
    ) -> None:
        """
        Push metrics to a Prometheus Pushgateway.

        Delivery errors are logged as warnings and do not fail the run.
        """
        try:
            push_to_gateway(
                gateway_url,
                job=job_name,
                registry=self.registry,
                grouping_key=grouping_key or {}
            )
            logger.info(f"Pushed metrics to gateway: {gateway_url}")
        except OSError as e:
            logger.warning(f"Failed to push metrics to gateway {gateway_url}: {e}")
