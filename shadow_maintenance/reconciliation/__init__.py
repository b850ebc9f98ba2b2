"""
Reconciliation Module for Shadow Maintenance

Detects drift between primary records and their shadow index records and
repairs it.

Main components:
- detector: Drift classification of primary records
- repairer: Repair transaction generation and execution
- worker: Segment scan loop

Usage:
    from shadow_maintenance.reconciliation import SegmentWorker, WorkerRequest

    worker = SegmentWorker(table, config)
    result = worker.run(WorkerRequest.from_event(event))
"""

from shadow_maintenance.reconciliation.detector import DriftDetector, DriftReason, DriftResult
from shadow_maintenance.reconciliation.repairer import (
    RepairError,
    ShadowRepairer,
    TransactionTooLargeError,
)
from shadow_maintenance.reconciliation.worker import (
    SegmentWorker,
    WorkerInputError,
    WorkerRequest,
    WorkerResult,
    WorkerState,
)

__all__ = [
    "DriftDetector",
    "DriftReason",
    "DriftResult",
    "RepairError",
    "ShadowRepairer",
    "TransactionTooLargeError",
    "SegmentWorker",
    "WorkerInputError",
    "WorkerRequest",
    "WorkerResult",
    "WorkerState",
]
