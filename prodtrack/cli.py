"""
Shift Report CLI

Prints per-shift tonnage, shift statistics, the current shift's material
breakdown and optional machine OEE from exported files.

Usage:
    prodtrack-report --materials materials.csv --data production.json
    prodtrack-report --materials materials.csv --data production.json \\
        --now 2024-03-10T07:00 --machine M1 --machine M2
"""
import argparse
import logging
import sys
from datetime import datetime
from typing import List, Optional

from .config import Config
from .analysis.oee_calculator import (
    calculate_machine_oee,
    calculate_productivity,
    fleet_recommendations,
    machine_statuses_from_orders,
    summarize_machines,
)
from .analysis.shift_aggregator import ShiftAggregator
from .core.models import parse_timestamp
from .core.time_windows.shifts import is_same_shift
from .data.loaders import load_materials, load_production_data
from .utils.diagnostics import DiagnosticLog
from .utils.formatting import format_fleet_report, format_shift_report

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Production shift tonnage and OEE report")
    p.add_argument("--materials", default=Config.MATERIALS_PATH,
                   help="Material table CSV (default: MATERIALS_PATH)")
    p.add_argument("--sep", default=";", help="Material CSV column separator")
    p.add_argument("--data", required=True,
                   help='JSON file with {"records": [...], "orders": [...]}')
    p.add_argument("--now", default=None,
                   help="Report time as ISO timestamp (default: current local time)")
    p.add_argument("--machine", action="append", default=[],
                   help="Machine id to include OEE for (repeatable)")
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, Config.LOG_LEVEL.upper()),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if not args.materials:
        logger.error("No materials file: pass --materials or set MATERIALS_PATH")
        return 2

    now = parse_timestamp(args.now) if args.now else datetime.now(Config.timezone())

    catalog = load_materials(args.materials, sep=args.sep)
    records, orders = load_production_data(args.data)

    diagnostics = DiagnosticLog()
    aggregator = ShiftAggregator(catalog, diagnostics=diagnostics)

    tonnage = aggregator.aggregate_tonnage_by_shift(records, orders, now)
    statistics = aggregator.calculate_shift_statistics(records, orders, now)
    current = aggregator.calculate_current_shift_total_tonnage(records, orders, now)
    machines = [
        calculate_machine_oee(machine_id, records, orders, catalog, now, diagnostics)
        for machine_id in args.machine
    ]

    print(format_shift_report(now, tonnage, statistics, current, machines))

    if machines:
        machine_ids = set(args.machine)
        machine_orders = [o for o in orders if o.machine_id in machine_ids]
        order_ids = {o.id for o in machine_orders}
        shift_records = [
            r for r in records
            if r.order_id in order_ids and is_same_shift(r.recorded_at, now)
        ]
        fleet = summarize_machines(machines)
        productivity = calculate_productivity(
            shift_records, machine_orders, machine_statuses_from_orders(machine_orders)
        )
        print()
        print(format_fleet_report(fleet, productivity, fleet_recommendations(fleet, productivity)))

    if len(diagnostics):
        summary = ", ".join(f"{code}={count}" for code, count in diagnostics.summary().items())
        print(f"\nData warnings: {summary}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
