"""
Formatting Utilities

Functions for formatting tonnage, percentages and shift reports for display.
"""

from datetime import datetime
from typing import Dict, List, Optional

from ..core.models import Shift


def format_tonnage(tonnage: float) -> str:
    """
    Format tonnes for display, switching to kilograms below one kilogram.

    Examples:
        >>> format_tonnage(1.23456)
        '1.235 t'
        >>> format_tonnage(0.0005)
        '0.50 kg'
    """
    if tonnage < 0.001:
        return f"{tonnage * 1000:.2f} kg"
    return f"{tonnage:.3f} t"


def format_percentage(value: float, decimals: int = 1) -> str:
    """Format a 0-100 percentage"""
    return f"{value:.{decimals}f}%"


def format_timestamp(value: Optional[datetime]) -> str:
    """Format a datetime as YYYY-MM-DD HH:MM:SS (empty string for None)"""
    if value is None:
        return ""
    return value.strftime("%Y-%m-%d %H:%M:%S")


def format_shift_report(
    now: datetime,
    tonnage_by_shift: Dict[Shift, float],
    statistics: Dict[Shift, Dict[str, float]],
    current_shift: dict,
    machines: Optional[List] = None
) -> str:
    """
    Render a plain text shift report.

    Args:
        now: Report time
        tonnage_by_shift: Output of ShiftAggregator.aggregate_tonnage_by_shift
        statistics: Output of ShiftAggregator.calculate_shift_statistics
        current_shift: Output of ShiftAggregator.calculate_current_shift_total_tonnage
        machines: Optional list of MachineOEE

    Returns:
        Multi-line report string
    """
    lines = [f"Production report at {format_timestamp(now)}", ""]

    lines.append(f"{'Shift':<10} {'Tonnage':>12} {'Avg/h':>12} {'Records':>8}")
    for shift in (Shift.MORNING, Shift.AFTERNOON, Shift.NIGHT):
        stats = statistics.get(shift, {})
        lines.append(
            f"{shift.value:<10} {format_tonnage(tonnage_by_shift.get(shift, 0.0)):>12} "
            f"{format_tonnage(stats.get('average', 0.0)):>12} {stats.get('record_count', 0):>8}"
        )

    lines.append("")
    lines.append(f"Current shift total: {format_tonnage(current_shift['total_tonnage'])}")
    for item in current_shift['material_breakdown']:
        lines.append(
            f"  {item['name']}: {format_tonnage(item['tonnage'])} ({item['quantity']} containers)"
        )

    for machine in machines or []:
        lines.append("")
        lines.append(
            f"Machine {machine.machine_id}: OEE {format_percentage(machine.oee)} "
            f"(A {format_percentage(machine.availability)}, "
            f"P {format_percentage(machine.performance)}, "
            f"Q {format_percentage(machine.quality)}) [{machine.criticality}]"
        )
        for issue in machine.issues:
            lines.append(f"  - {issue}")

    return "\n".join(lines)


def format_fleet_report(summary: dict, productivity: dict, recommendations: List[dict]) -> str:
    """Render fleet averages, productivity and recommendations as plain text"""
    lines = [
        f"Fleet ({summary['machine_count']} machines): "
        f"OEE {format_percentage(summary['avg_oee'])}, "
        f"{summary['critical_machines']} critical, {summary['excellent_machines']} excellent",
        f"Plan attainment {format_percentage(productivity['production_efficiency'])}, "
        f"quality rate {format_percentage(productivity['quality_rate'])}, "
        f"utilization {format_percentage(productivity['utilization_rate'])}",
    ]
    for rec in recommendations:
        lines.append(f"  [{rec['priority']}] {rec['title']}: {rec['description']}")
    return "\n".join(lines)
