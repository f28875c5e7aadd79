"""Command line access to group status, entity checks and DORA metrics.

Usage:
    uv run python -m traffic_light.cli status payments --signal preproduction
    uv run python -m traffic_light.cli checks component:default/checkout --check dependabotLowAlertCheck
    uv run python -m traffic_light.cli dynamic-checks component:default/checkout --check sonarcloud-bugs
    uv run python -m traffic_light.cli metric changeFailureRate monthly --from 2024-01-01 --to 2024-06-30
    uv run python -m traffic_light.cli list-checks
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import datetime

from traffic_light.dora.aggregator import MetricAggregator
from traffic_light.dora.source import SqliteDoraSource
from traffic_light.errors import TrafficLightError
from traffic_light.models import Granularity, MetricKind, parse_entity_ref
from traffic_light.rules.checker import FactChecker, check_result_to_json
from traffic_light.rules.dynamic import DynamicThresholdChecker
from traffic_light.rules.loader import build_dynamic_registry, build_registry
from traffic_light.status.signals import Signal, group_status

logging.basicConfig(
    level=logging.WARNING,
    format="%(levelname)s: %(message)s",
)


async def _status(args: argparse.Namespace) -> None:
    status = await group_status(args.group, Signal(args.signal))
    print(f"{status.group}: {status.color.value.upper()} ({status.reason}, {status.sample_count} samples)")


async def _checks(args: argparse.Namespace) -> None:
    if args.command == "dynamic-checks":
        checker: FactChecker | DynamicThresholdChecker = DynamicThresholdChecker(build_dynamic_registry())
    else:
        checker = FactChecker(build_registry())
    results = await checker.run_checks(parse_entity_ref(args.entity), args.check)
    if args.json:
        print(json.dumps([check_result_to_json(r) for r in results], indent=2))
        return
    for result in results:
        print(f"{'PASS' if result['passed'] else 'FAIL'}  {result['check_id']}")


async def _metric(args: argparse.Namespace) -> None:
    aggregator = MetricAggregator(SqliteDoraSource())
    points = await aggregator.get_metric(
        MetricKind(args.kind), Granularity(args.granularity), args.group or [], args.from_time, args.to_time
    )
    if not points:
        print("No data in range.")
    for point in points:
        print(f"{point.period_key}\t{point.value:.2f}")


def _list_checks(_: argparse.Namespace) -> None:
    for check in build_registry().list():
        print(f"{check.id}\t{check.name}\t(facts: {', '.join(check.fact_ids)})")
    for dynamic in build_dynamic_registry().list():
        print(f"{dynamic.id}\t{dynamic.name}\t(fact: {'.'.join(dynamic.fact_ids)}, dynamic threshold)")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Traffic-light health status")
    subparsers = parser.add_subparsers(dest="command", required=True)

    status = subparsers.add_parser("status", help="Aggregated color for a group")
    status.add_argument("group", help="Group name or entity ref (system:default/payments)")
    status.add_argument("--signal", choices=[s.value for s in Signal], default=Signal.DEPENDABOT.value)

    checks = subparsers.add_parser("checks", help="Run checks for one entity")
    checks.add_argument("entity", help="Entity ref, e.g. component:default/checkout")
    checks.add_argument("--check", action="append", help="Check id (repeatable). Default: all checks.")
    checks.add_argument("--json", action="store_true", help="Print full results with traces")

    dynamic = subparsers.add_parser("dynamic-checks", help="Run checks whose thresholds come from the system")
    dynamic.add_argument("entity", help="Entity ref, e.g. component:default/checkout")
    dynamic.add_argument("--check", action="append", help="Dynamic check id (repeatable). Default: all.")
    dynamic.add_argument("--json", action="store_true", help="Print full results with traces")

    metric = subparsers.add_parser("metric", help="DORA metric series")
    metric.add_argument("kind", choices=[k.value for k in MetricKind])
    metric.add_argument("granularity", choices=[g.value for g in Granularity])
    metric.add_argument("--from", dest="from_time", type=datetime.fromisoformat, required=True)
    metric.add_argument("--to", dest="to_time", type=datetime.fromisoformat, required=True)
    metric.add_argument("--group", action="append", help="Project name (repeatable). Default: all projects.")

    subparsers.add_parser("list-checks", help="List registered checks")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse args and run the selected command."""
    args = _build_parser().parse_args(argv)

    try:
        if args.command == "list-checks":
            _list_checks(args)
        elif args.command == "status":
            asyncio.run(_status(args))
        elif args.command in ("checks", "dynamic-checks"):
            asyncio.run(_checks(args))
        else:
            asyncio.run(_metric(args))
    except (TrafficLightError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
