"""
Monitoring Module for Shadow Maintenance

Observability for maintenance runs:
- Prometheus metrics for scans, drift and repairs
- Alert rule definitions

Usage:
    from shadow_maintenance.monitoring import MaintenanceMetrics, AlertRuleGenerator

    metrics = MaintenanceMetrics()
    metrics.record_drift("articles", "config_hash_mismatch")

    rules = AlertRuleGenerator().generate_alert_rules()
"""

from shadow_maintenance.monitoring.metrics import MaintenanceMetrics
from shadow_maintenance.monitoring.alerts import AlertRuleGenerator

__all__ = [
    "MaintenanceMetrics",
    "AlertRuleGenerator",
]
