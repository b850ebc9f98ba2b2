"""
Unit tests for the scan coordinator.

Tests request validation, execution naming, fan-out and dispatch.
"""

import json
import re
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from shadow_maintenance.coordinator import (
    DispatchError,
    DispatchReceipt,
    InvalidInputError,
    LocalDispatcher,
    MaintenanceCoordinator,
    MaintenanceRequest,
    ResourceNotAllowedError,
    StepFunctionsDispatcher,
    aggregate_results,
    build_segment_payloads,
    generate_execution_name,
    validate_request,
)
from shadow_maintenance.monitoring.metrics import MaintenanceMetrics

ALLOWED = {"articles", "tasks"}


class TestValidateRequest:
    """Test coordinator input validation."""

    def test_applies_defaults(self):
        request = validate_request({"resource": "articles"}, ALLOWED)

        assert request == MaintenanceRequest("articles", segments=8, dry_run=True, page_limit=100)

    def test_explicit_values(self):
        request = validate_request(
            {"resource": "tasks", "segments": 2, "dryRun": False, "pageLimit": 7}, ALLOWED
        )

        assert request.to_dict() == {
            "resource": "tasks", "segments": 2, "dryRun": False, "pageLimit": 7,
        }

    @pytest.mark.parametrize("event", [
        {},
        {"resource": ""},
        {"resource": 1},
        {"resource": "articles", "segments": 0},
        {"resource": "articles", "segments": 2.5},
        {"resource": "articles", "segments": True},
        {"resource": "articles", "pageLimit": -1},
        {"resource": "articles", "dryRun": "yes"},
    ])
    def test_invalid_input(self, event):
        with pytest.raises(InvalidInputError) as exc_info:
            validate_request(event, ALLOWED)

        assert exc_info.value.code == "INVALID_INPUT"
        assert str(exc_info.value).startswith("Invalid input")

    def test_resource_not_allowed(self):
        with pytest.raises(ResourceNotAllowedError) as exc_info:
            validate_request({"resource": "users"}, ALLOWED)

        assert exc_info.value.code == "RESOURCE_NOT_ALLOWED"
        assert "Allowed resources: articles, tasks" in str(exc_info.value)


class TestExecutionNames:
    """Test execution naming and payload fan-out."""

    def test_execution_name_format(self):
        name = generate_execution_name("articles")

        assert re.fullmatch(r"articles-\d{13}-[a-z0-9]{6}", name)

    def test_execution_names_are_unique(self):
        assert generate_execution_name("tasks") != generate_execution_name("tasks")

    def test_build_segment_payloads(self):
        request = MaintenanceRequest("articles", segments=3, dry_run=False, page_limit=10)

        payloads = build_segment_payloads(request, "articles-1-abcdef", "run-9")

        assert [p["segment"] for p in payloads] == [0, 1, 2]
        assert [p["name"] for p in payloads] == [
            "articles-1-abcdef-seg-0", "articles-1-abcdef-seg-1", "articles-1-abcdef-seg-2",
        ]
        assert all(p["runId"] == "run-9" for p in payloads)
        assert all(p["totalSegments"] == 3 for p in payloads)
        assert all(p["dryRun"] is False and p["pageLimit"] == 10 for p in payloads)


class TestStepFunctionsDispatcher:
    """Test Step Functions dispatch."""

    @pytest.fixture
    def mock_sfn(self):
        client = MagicMock()
        client.start_execution.return_value = {
            "executionArn": "arn:aws:states:us-east-1:123:execution:maint:articles-1-abcdef",
            "startDate": datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        }
        return client

    def test_starts_execution(self, mock_sfn):
        dispatcher = StepFunctionsDispatcher(mock_sfn, "arn:sm")
        request = MaintenanceRequest("articles", segments=2)
        payloads = build_segment_payloads(request, "articles-1-abcdef", "run-1")

        receipt = dispatcher.dispatch("articles-1-abcdef", request, payloads)

        kwargs = mock_sfn.start_execution.call_args.kwargs
        assert kwargs["stateMachineArn"] == "arn:sm"
        assert kwargs["name"] == "articles-1-abcdef"
        execution_input = json.loads(kwargs["input"])
        assert execution_input["resource"] == "articles"
        assert execution_input["segments"] == 2
        assert execution_input["dryRun"] is True
        assert execution_input["pageLimit"] == 100
        assert execution_input["runId"] == "run-1"
        assert len(execution_input["workers"]) == 2
        assert receipt.to_dict() == {
            "executionArn": "arn:aws:states:us-east-1:123:execution:maint:articles-1-abcdef",
            "startDate": "2024-03-01T12:00:00+00:00",
        }

    def test_client_error_becomes_dispatch_error(self, mock_sfn):
        mock_sfn.start_execution.side_effect = ClientError(
            {"Error": {"Code": "ExecutionAlreadyExists", "Message": "exists"}}, "StartExecution"
        )
        dispatcher = StepFunctionsDispatcher(mock_sfn, "arn:sm")

        with pytest.raises(DispatchError) as exc_info:
            dispatcher.dispatch("n", MaintenanceRequest("articles"), [])

        assert exc_info.value.code == "SFN_ERROR"

    def test_incomplete_response(self, mock_sfn):
        mock_sfn.start_execution.return_value = {"executionArn": "arn"}
        dispatcher = StepFunctionsDispatcher(mock_sfn, "arn:sm")

        with pytest.raises(DispatchError, match="missing required fields"):
            dispatcher.dispatch("n", MaintenanceRequest("articles"), [])


class TestMaintenanceCoordinator:
    """Test the coordinator entry point."""

    def test_start_dispatches_one_payload_per_segment(self):
        dispatcher = MagicMock()
        dispatcher.dispatch.return_value = DispatchReceipt("arn:exec", "2024-03-01T12:00:00+00:00")
        coordinator = MaintenanceCoordinator(ALLOWED, dispatcher)

        receipt = coordinator.start({"resource": "tasks", "segments": 4})

        assert receipt.execution_id == "arn:exec"
        execution_name, request, payloads = dispatcher.dispatch.call_args.args
        assert execution_name.startswith("tasks-")
        assert request.segments == 4
        assert len(payloads) == 4
        assert len({p["runId"] for p in payloads}) == 1
        assert len({p["name"] for p in payloads}) == 4

    def test_validation_error_is_not_dispatched(self):
        dispatcher = MagicMock()
        metrics = MaintenanceMetrics()
        coordinator = MaintenanceCoordinator(ALLOWED, dispatcher, metrics)

        with pytest.raises(ResourceNotAllowedError):
            coordinator.start({"resource": "users"})

        dispatcher.dispatch.assert_not_called()
        assert metrics.registry.get_sample_value(
            "shadow_maintenance_coordinator_runs_total",
            {"resource": "users", "status": "RESOURCE_NOT_ALLOWED"}
        ) == 1.0

    def test_records_started_run(self):
        dispatcher = MagicMock()
        dispatcher.dispatch.return_value = DispatchReceipt("arn:exec", "now")
        metrics = MaintenanceMetrics()

        MaintenanceCoordinator(ALLOWED, dispatcher, metrics).start({"resource": "articles"})

        assert metrics.registry.get_sample_value(
            "shadow_maintenance_coordinator_runs_total",
            {"resource": "articles", "status": "started"}
        ) == 1.0


class TestLocalDispatcher:
    """Test local thread-pool dispatch."""

    def test_runs_every_segment(self, table, shadow_config, record_factory):
        for i in range(10):
            table.put(record_factory(f"r{i}", title=f"t{i}"))
        dispatcher = LocalDispatcher(table, shadow_config)
        coordinator = MaintenanceCoordinator(["articles"], dispatcher)

        receipt = coordinator.start({"resource": "articles", "segments": 3, "dryRun": True})
        results = dispatcher.wait(receipt.execution_id)

        assert receipt.execution_id.startswith("local:articles-")
        assert sorted(r["segment"] for r in results) == [0, 1, 2]
        assert sum(r["scanned"] for r in results) == 10
        assert all(r["status"] == "done" for r in results)

    def test_failed_segment_is_reported(self, table, shadow_config):
        table.scan_error = RuntimeError("boom")
        dispatcher = LocalDispatcher(table, shadow_config)
        coordinator = MaintenanceCoordinator(["articles"], dispatcher)

        receipt = coordinator.start({"resource": "articles", "segments": 2})
        results = dispatcher.wait(receipt.execution_id)

        assert [r["status"] for r in results] == ["failed", "failed"]
        assert results[0]["errors"][0]["message"] == "boom"

    def test_wait_releases_execution(self, table, shadow_config):
        dispatcher = LocalDispatcher(table, shadow_config)
        receipt = MaintenanceCoordinator(["articles"], dispatcher).start({"resource": "articles"})

        dispatcher.wait(receipt.execution_id)

        assert receipt.execution_id not in dispatcher._executions
        with pytest.raises(KeyError):
            dispatcher.wait(receipt.execution_id)

    def test_unknown_execution(self, table, shadow_config):
        with pytest.raises(KeyError):
            LocalDispatcher(table, shadow_config).wait("local:missing")


class TestAggregateResults:
    """Test per-segment result aggregation."""

    def test_sums_counters(self):
        results = [
            {"segment": 0, "scanned": 5, "drifted": 2, "repaired": 1, "failed": 1, "noop": 3,
             "pages": 1, "status": "done", "errors": [{"id": "a", "code": "X", "message": "m"}]},
            {"segment": 1, "scanned": 4, "drifted": 0, "repaired": 0, "failed": 0, "noop": 4,
             "pages": 2, "status": "done", "errors": []},
        ]

        summary = aggregate_results(results)

        assert summary["scanned"] == 9
        assert summary["drifted"] == 2
        assert summary["repaired"] == 1
        assert summary["failed"] == 1
        assert summary["noop"] == 7
        assert summary["pages"] == 3
        assert summary["segments"] == 2
        assert len(summary["errors"]) == 1
        assert summary["complete"] is True

    def test_flags_incomplete_segments(self):
        results = [
            {"segment": 0, "scanned": 1, "status": "limit_reached"},
            {"segment": 1, "status": "failed", "errors": []},
        ]

        summary = aggregate_results(results)

        assert summary["incomplete_segments"] == [0, 1]
        assert summary["complete"] is False
