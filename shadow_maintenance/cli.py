"""
Shadow Maintenance Tool

Runs shadow index maintenance locally or through Step Functions, and
manages the shadow config and alert rules.

Usage:
    shadow-maintenance run --resource articles --table my-table
    shadow-maintenance run --resource articles --table my-table --apply --segments 4
    shadow-maintenance start --resource tasks --segments 8 --page-limit 50
    shadow-maintenance generate-config --output shadow-config.json
    shadow-maintenance generate-config --base64
    shadow-maintenance fingerprint --config-file shadow-config.json
    shadow-maintenance alerts --output maintenance-alerts.yml
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from shadow_maintenance.config import (
    DEFAULT_PAGE_LIMIT,
    DEFAULT_SEGMENTS,
    ClientFactory,
    ConfigurationError,
    CoordinatorSettings,
)
from shadow_maintenance.coordinator import (
    LocalDispatcher,
    MaintenanceCoordinator,
    StepFunctionsDispatcher,
    aggregate_results,
)
from shadow_maintenance.monitoring.alerts import AlertRuleGenerator
from shadow_maintenance.monitoring.metrics import MaintenanceMetrics
from shadow_maintenance.shadows.fingerprint import ConfigFingerprint
from shadow_maintenance.shadows.registry import (
    build_shadow_config,
    encode_config,
    write_shadow_config,
)
from shadow_maintenance.shadows.schema import ShadowConfig
from shadow_maintenance.storage.dynamodb import DynamoDBShadowTable
from shadow_maintenance.utils.structured_logging import configure_logging

logger = logging.getLogger("shadow_maintenance.cli")


def load_shadow_config(config_file: Optional[str]) -> ShadowConfig:
    """
    Load the shadow config from a JSON file, or from SHADOW_CONFIG (base64).

    Without either, the config is built from the resource definitions.
    """
    if config_file:
        with open(config_file, encoding="utf-8") as f:
            return ShadowConfig.from_json(f.read())

    blob = os.getenv("SHADOW_CONFIG")
    if blob:
        return ShadowConfig.from_base64(blob)

    return ShadowConfig.from_dict(build_shadow_config())


def _region(args: argparse.Namespace) -> str:
    region = args.region or os.getenv("REGION") or os.getenv("AWS_REGION")
    if not region:
        raise ConfigurationError("Missing required environment variables: REGION")
    return region


def _coordinator_event(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "resource": args.resource,
        "segments": args.segments,
        "dryRun": not args.apply,
        "pageLimit": args.page_limit,
    }


def run_local(args: argparse.Namespace) -> Dict[str, Any]:
    """Run maintenance with local threads and return aggregated results."""
    config = load_shadow_config(args.config_file)

    table_name = args.table or os.getenv("TABLE_NAME")
    if not table_name:
        raise ConfigurationError("Missing required environment variables: TABLE_NAME")

    clients = ClientFactory()
    table = DynamoDBShadowTable(
        clients.dynamodb(_region(args)), table_name, page_size=args.page_size
    )
    metrics = MaintenanceMetrics()
    dispatcher = LocalDispatcher(table, config, metrics)
    coordinator = MaintenanceCoordinator(config.resources.keys(), dispatcher, metrics)

    receipt = coordinator.start(_coordinator_event(args))
    results = dispatcher.wait(receipt.execution_id)

    if args.pushgateway:
        metrics.push(args.pushgateway, job_name="shadow_maintenance_cli",
                     grouping_key={"resource": args.resource})

    summary = aggregate_results(results)
    summary.update(receipt.to_dict())
    summary["dryRun"] = not args.apply
    summary["results"] = results
    return summary


def start_remote(args: argparse.Namespace) -> Dict[str, str]:
    """Start a Step Functions maintenance run."""
    settings = CoordinatorSettings.from_env()
    dispatcher = StepFunctionsDispatcher(
        ClientFactory().stepfunctions(args.region or settings.region),
        settings.state_machine_arn
    )
    coordinator = MaintenanceCoordinator(settings.allowed_resources, dispatcher)
    return coordinator.start(_coordinator_event(args)).to_dict()


def generate_config(args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    document = build_shadow_config(schema_version=args.schema_version)

    if args.output:
        write_shadow_config(document, args.output)
    if args.base64:
        print(encode_config(document))
        return None
    if args.output:
        return None
    return document


def show_fingerprint(args: argparse.Namespace) -> Dict[str, Any]:
    config = load_shadow_config(args.config_file)
    fp = ConfigFingerprint.of(config)
    return {
        "version": fp.version,
        "hash": fp.hash,
        "resources": sorted(config.resources),
    }


def export_alerts(args: argparse.Namespace) -> Optional[Dict[str, int]]:
    generator = AlertRuleGenerator(drift_threshold=args.drift_threshold)
    if args.output:
        generator.export_to_yaml(args.output)
        return generator.get_alert_summary()
    print(generator.to_yaml(), end="")
    return None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shadow-maintenance",
        description="Shadow Index Maintenance Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    def add_run_options(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--resource", required=True, help="Resource to maintain")
        sub.add_argument("--segments", type=int, default=DEFAULT_SEGMENTS,
                         help="Parallel scan segments")
        sub.add_argument("--page-limit", type=int, default=DEFAULT_PAGE_LIMIT,
                         help="Maximum scan pages per segment")
        sub.add_argument("--apply", action="store_true",
                         help="Write repairs (default is a dry run)")
        # Also accepted after the subcommand; SUPPRESS keeps a top-level value
        sub.add_argument("--region", default=argparse.SUPPRESS,
                         help="AWS region (default: REGION/AWS_REGION)")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run maintenance locally")
    add_run_options(run_parser)
    run_parser.add_argument("--table", help="DynamoDB table (default: TABLE_NAME)")
    run_parser.add_argument("--config-file", help="Shadow config JSON file")
    run_parser.add_argument("--page-size", type=int, help="Scan page size")
    run_parser.add_argument("--pushgateway", help="Prometheus Pushgateway URL")

    # Start command
    start_parser = subparsers.add_parser("start", help="Start a Step Functions run")
    add_run_options(start_parser)

    # Generate-config command
    config_parser = subparsers.add_parser("generate-config", help="Generate the shadow config")
    config_parser.add_argument("--output", help="Write JSON to this file")
    config_parser.add_argument("--base64", action="store_true",
                               help="Print the base64 deployment blob")
    config_parser.add_argument("--schema-version", default="1.0", help="Schema version")

    # Fingerprint command
    fp_parser = subparsers.add_parser("fingerprint", help="Show the shadow config fingerprint")
    fp_parser.add_argument("--config-file", help="Shadow config JSON file")

    # Alerts command
    alerts_parser = subparsers.add_parser("alerts", help="Export Prometheus alert rules")
    alerts_parser.add_argument("--output", help="Write YAML to this file")
    alerts_parser.add_argument("--drift-threshold", type=int, default=100,
                               help="Drifted records per day that raise an alert")

    parser.add_argument("--region", help="AWS region (default: REGION/AWS_REGION)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    return parser


COMMANDS = {
    "run": run_local,
    "start": start_remote,
    "generate-config": generate_config,
    "fingerprint": show_fingerprint,
    "alerts": export_alerts,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    if not args.command:
        parser.print_help()
        return 1

    try:
        output = COMMANDS[args.command](args)
        if output is not None:
            print(json.dumps(output, indent=2, default=str))
        return 0

    except Exception as e:
        code = getattr(e, "code", None)
        prefix = f"{code}: " if code else ""
        logger.error(f"Error: {prefix}{e}", exc_info=args.verbose)
        return 1


if __name__ == "__main__":
    sys.exit(main())
