"""
Unit tests for maintenance metrics.
"""

from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry

from shadow_maintenance.monitoring.metrics import MaintenanceMetrics


class TestMaintenanceMetrics:
    """Test metric recording."""

    @pytest.fixture
    def metrics(self):
        return MaintenanceMetrics()

    def test_each_instance_has_own_registry(self):
        assert MaintenanceMetrics().registry is not MaintenanceMetrics().registry

    def test_uses_given_registry(self):
        registry = CollectorRegistry()

        assert MaintenanceMetrics(registry).registry is registry

    def test_record_page(self, metrics):
        metrics.record_page("articles", 25)
        metrics.record_page("articles", 0)

        sample = metrics.registry.get_sample_value
        assert sample("shadow_maintenance_pages_scanned_total", {"resource": "articles"}) == 2.0
        assert sample("shadow_maintenance_records_scanned_total", {"resource": "articles"}) == 25.0

    def test_record_repair_failure_code(self, metrics):
        metrics.record_repair("tasks", "failure", "TRANSACTION_FAILED")

        assert metrics.registry.get_sample_value(
            "shadow_maintenance_repairs_total",
            {"resource": "tasks", "status": "failure", "code": "TRANSACTION_FAILED"}
        ) == 1.0

    def test_record_worker_run(self, metrics):
        metrics.record_worker_run("tasks", "limit_reached", 12.5)

        sample = metrics.registry.get_sample_value
        assert sample(
            "shadow_maintenance_worker_runs_total", {"resource": "tasks", "status": "limit_reached"}
        ) == 1.0
        assert sample("shadow_maintenance_worker_duration_seconds_sum", {"resource": "tasks"}) == 12.5

    def test_push(self, metrics):
        with patch("shadow_maintenance.monitoring.metrics.push_to_gateway") as mock_push:
            metrics.push("localhost:9091", grouping_key={"resource": "tasks"})

        mock_push.assert_called_once_with(
            "localhost:9091",
            job="shadow_maintenance",
            registry=metrics.registry,
            grouping_key={"resource": "tasks"}
        )

    def test_push_failure_does_not_raise(self, metrics):
        with patch("shadow_maintenance.monitoring.metrics.push_to_gateway",
                   side_effect=OSError("connection refused")):
            metrics.push("localhost:9091")
