"""
Alert Rule Generator for Shadow Maintenance

Prometheus alert rules over the maintenance metrics: repair failures,
drift that keeps coming back, failed worker runs and coordinator errors.
"""

import logging
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

METRIC_PREFIX = "shadow_maintenance"


def _rule(
    name: str,
    expr: str,
    duration: str,
    severity: str,
    summary: str,
    description: str
) -> Dict[str, Any]:
    return {
        "alert": name,
        "expr": expr,
        "for": duration,
        "labels": {
            "severity": severity,
            "component": "shadow_maintenance"
        },
        "annotations": {
            "summary": summary,
            "description": description
        }
    }


class AlertRuleGenerator:
    """Generates Prometheus alert rules for shadow maintenance."""

    def __init__(self, drift_threshold: int = 100, metric_prefix: str = METRIC_PREFIX):
        """
        Initialize alert rule generator.

        Args:
            drift_threshold: Drifted records per run above which drift is
                considered persistent
            metric_prefix: Prefix of the maintenance metric names
        """
        self.drift_threshold = drift_threshold
        self.prefix = metric_prefix
        logger.info("AlertRuleGenerator initialized")

    def generate_alert_rules(self) -> Dict[str, Any]:
        """
        Generate complete alert rule configuration.

        Returns:
            Dict with alert rule groups in Prometheus format
        """
        groups = [
            self._generate_repair_alerts(),
            self._generate_drift_alerts(),
            self._generate_worker_alerts(),
            self._generate_coordinator_alerts(),
        ]

        logger.info(f"Generated {len(groups)} alert rule groups")
        return {"groups": groups}

    def _generate_repair_alerts(self) -> Dict[str, Any]:
        p = self.prefix
        return {
            "name": "shadow_repairs",
            "interval": "1m",
            "rules": [
                _rule(
                    "ShadowRepairFailures",
                    f'increase({p}_repairs_total{{status="failure"}}[1h]) > 0',
                    "5m",
                    "warning",
                    "Shadow repairs are failing",
                    "{{ $value }} repairs failed for {{ $labels.resource }} "
                    "with code {{ $labels.code }} in the last hour"
                ),
                _rule(
                    "ShadowRepairTransactionTooLarge",
                    f'increase({p}_repairs_total{{status="failure",code="VALIDATION_ERROR"}}[1h]) > 0',
                    "1m",
                    "critical",
                    "Shadow repair cannot be applied atomically",
                    "Records of {{ $labels.resource }} need more transaction items "
                    "than one transaction allows. Reduce sortable fields or repair manually."
                ),
            ]
        }

    def _generate_drift_alerts(self) -> Dict[str, Any]:
        p = self.prefix
        return {
            "name": "shadow_drift",
            "interval": "5m",
            "rules": [
                _rule(
                    "PersistentShadowDrift",
                    f"increase({p}_drift_detected_total"
                    f'{{reason="shadow_keys_mismatch"}}[24h]) > {self.drift_threshold}',
                    "30m",
                    "warning",
                    "Shadow index keeps drifting",
                    "{{ $labels.resource }} had {{ $value }} records with mismatched "
                    "shadow keys in 24h. Check the write path."
                ),
            ]
        }

    def _generate_worker_alerts(self) -> Dict[str, Any]:
        p = self.prefix
        return {
            "name": "shadow_workers",
            "interval": "1m",
            "rules": [
                _rule(
                    "ShadowWorkerFailed",
                    f'increase({p}_worker_runs_total{{status="failed"}}[1h]) > 0',
                    "1m",
                    "critical",
                    "Segment worker failed",
                    "A segment worker for {{ $labels.resource }} aborted. "
                    "Part of the table was not scanned."
                ),
                _rule(
                    "ShadowWorkerPageLimitReached",
                    f'increase({p}_worker_runs_total{{status="limit_reached"}}[6h]) > 0',
                    "5m",
                    "info",
                    "Segment worker stopped at its page limit",
                    "Workers for {{ $labels.resource }} hit the page limit. "
                    "Raise pageLimit or the segment count."
                ),
            ]
        }

    def _generate_coordinator_alerts(self) -> Dict[str, Any]:
        p = self.prefix
        return {
            "name": "shadow_coordinator",
            "interval": "1m",
            "rules": [
                _rule(
                    "ShadowCoordinatorErrors",
                    f'increase({p}_coordinator_runs_total{{status!="started"}}[1h]) > 0',
                    "5m",
                    "warning",
                    "Maintenance runs are being rejected",
                    "Coordinator rejected runs for {{ $labels.resource }} "
                    "with {{ $labels.status }}"
                ),
            ]
        }

    def to_yaml(self) -> str:
        """Render the alert rules as a YAML document."""
        return yaml.safe_dump(
            self.generate_alert_rules(), default_flow_style=False, sort_keys=False
        )

    def export_to_yaml(self, output_file: str) -> None:
        """
        Export alert rules to YAML file.

        Args:
            output_file: Path to output YAML file
        """
        with open(output_file, 'w') as f:
            f.write(self.to_yaml())

        logger.info(f"Alert rules exported to {output_file}")

    def get_alert_summary(self, rules: Optional[Dict[str, Any]] = None) -> Dict[str, int]:
        """
        Get summary of alert rules.

        Returns:
            Dict with counts by severity
        """
        rules = rules or self.generate_alert_rules()
        groups: List[Dict[str, Any]] = rules["groups"]

        summary = {
            "total_groups": len(groups),
            "total_alerts": 0,
            "critical": 0,
            "warning": 0,
            "info": 0
        }

        for group in groups:
            for rule in group["rules"]:
                summary["total_alerts"] += 1
                severity = rule["labels"].get("severity", "unknown")
                if severity in summary:
                    summary[severity] += 1

        return summary
