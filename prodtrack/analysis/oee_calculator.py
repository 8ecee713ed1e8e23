"""
OEE Calculator
Availability, performance and quality per machine for the shift running at
`now`, combined into a composite efficiency score.

All components are percentages (0-100):
- Availability = (scheduled - downtime) / scheduled * 100
- Performance  = produced units / planned units * 100, capped at 100
- Quality      = (produced - rejects) / produced * 100, 100 with no production
- OEE          = A * P * Q / 10000

Every division guards its denominator and returns 0 instead of raising,
since results feed dashboards directly.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from ..core.calculations.tonnage import MaterialCatalog
from ..core.models import ProductionOrder, ProductionRecord
from ..core.time_windows.shifts import (
    classify_shift,
    NOMINAL_SHIFT_HOURS,
    current_shift_segment,
    is_same_shift,
    scheduled_shift_minutes,
)
from ..utils.diagnostics import DiagnosticLog, MATERIAL_NOT_FOUND, emit

logger = logging.getLogger(__name__)

ACTIVE_ORDER_STATUSES = ('running', 'pending')


@dataclass
class MachineOEE:
    """Container for a machine's OEE results (percentages 0-100)"""
    machine_id: str
    availability: float
    performance: float
    quality: float
    oee: float
    scheduled_minutes: float = 0.0
    downtime_minutes: float = 0.0
    total_planned: int = 0
    total_produced: int = 0
    total_rejects: int = 0
    record_count: int = 0
    active_order_id: Optional[str] = None
    shift: Optional[str] = None
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    @property
    def criticality(self) -> str:
        """Classification of the OEE score"""
        return classify_criticality(self.oee)

    def to_dict(self) -> Dict[str, float]:
        """Convert the four scores to a dictionary for display"""
        return {
            'availability': self.availability,
            'performance': self.performance,
            'quality': self.quality,
            'oee': self.oee
        }

    def to_rounded_dict(self) -> Dict[str, float]:
        """Scores rounded to two decimals"""
        return {key: round(value, 2) for key, value in self.to_dict().items()}


def calculate_availability(scheduled_minutes: float, downtime_minutes: float) -> float:
    """
    Availability percentage for a shift.

    Args:
        scheduled_minutes: Planned shift minutes
        downtime_minutes: Total downtime reported in the shift

    Returns:
        Percentage in [0, 100]; 0.0 if scheduled_minutes is not positive

    Example:
        >>> calculate_availability(500, 50)
        90.0
    """
    if scheduled_minutes <= 0:
        return 0.0
    operating_minutes = max(0.0, scheduled_minutes - downtime_minutes)
    return float(np.clip(operating_minutes / scheduled_minutes * 100, 0.0, 100.0))


def find_active_order(orders: Iterable[ProductionOrder]) -> Optional[ProductionOrder]:
    """First order with status 'running' or 'pending', in input order"""
    for order in orders:
        if order.status in ACTIVE_ORDER_STATUSES:
            return order
    return None


def calculate_performance(
    total_produced: int,
    active_order: Optional[ProductionOrder],
    catalog: MaterialCatalog,
    diagnostics: Optional[DiagnosticLog] = None
) -> float:
    """
    Performance against the active order's plan, in physical units.

    Both produced and planned container-units are converted with the
    material's units_per_container before comparing.

    Returns:
        Percentage capped at 100; 0.0 when there is no active order, the
        material is unknown, or the planned units are zero
    """
    if active_order is None:
        return 0.0

    material = catalog.get(active_order.product_name)
    if material is None:
        emit(
            diagnostics, MATERIAL_NOT_FOUND,
            f"Material not found for active order {active_order.id}: {active_order.product_name}",
            logger, order_id=active_order.id, product_name=active_order.product_name,
        )
        return 0.0
    if not material.units_per_container:
        return 0.0

    produced_units = total_produced * material.units_per_container
    planned_units = active_order.planned_quantity * material.units_per_container
    if planned_units <= 0:
        return 0.0

    return min(produced_units / planned_units * 100, 100.0)


def calculate_quality(total_produced: int, total_rejects: int) -> float:
    """
    Quality percentage.

    With nothing produced there is no defect to report, so quality is 100.

    Example:
        >>> calculate_quality(200, 10)
        95.0
        >>> calculate_quality(0, 0)
        100.0
    """
    if total_produced <= 0:
        return 100.0
    return max((total_produced - total_rejects) / total_produced * 100, 0.0)


def calculate_composite_score(availability: float, performance: float, quality: float) -> float:
    """Multiply three percentages and rescale to a percentage"""
    return availability * performance * quality / 10000


def classify_criticality(oee: float) -> str:
    """critical < 60 <= warning < 75 <= normal <= 85 < excellent"""
    if oee < 60:
        return "critical"
    if oee < 75:
        return "warning"
    if oee > 85:
        return "excellent"
    return "normal"


def calculate_machine_oee(
    machine_id: str,
    records: Iterable[ProductionRecord],
    orders: Iterable[ProductionOrder],
    catalog: MaterialCatalog,
    now: datetime,
    diagnostics: Optional[DiagnosticLog] = None,
    with_analysis: bool = True
) -> MachineOEE:
    """
    Calculate OEE for one machine over the shift running at `now`.

    Args:
        machine_id: Machine to evaluate
        records: Production records (all machines, any time)
        orders: Production orders (all machines)
        catalog: Material reference table
        now: Current time
        diagnostics: Optional collector for degraded paths
        with_analysis: Attach issues/recommendations from diagnose_machine()

    Returns:
        MachineOEE for the machine

    Example:
        >>> metrics = calculate_machine_oee("M1", records, orders, catalog, now)
        >>> print(f"OEE: {metrics.oee:.1f}% ({metrics.criticality})")
    """
    machine_orders = [o for o in orders if o.machine_id == machine_id]
    order_ids = {o.id for o in machine_orders}
    machine_records = [
        r for r in records
        if r.order_id in order_ids and is_same_shift(r.recorded_at, now)
    ]

    total_planned = sum(o.planned_quantity for o in machine_orders)
    total_produced = sum(r.produced_quantity for r in machine_records)
    total_rejects = sum(r.reject_quantity for r in machine_records)
    downtime = sum(r.downtime_minutes for r in machine_records)
    scheduled = scheduled_shift_minutes(now)

    active_order = find_active_order(machine_orders)

    availability = calculate_availability(scheduled, downtime)
    performance = calculate_performance(total_produced, active_order, catalog, diagnostics)
    quality = calculate_quality(total_produced, total_rejects)
    oee = calculate_composite_score(availability, performance, quality)

    segment = current_shift_segment(now)
    metrics = MachineOEE(
        machine_id=machine_id,
        availability=availability,
        performance=performance,
        quality=quality,
        oee=oee,
        scheduled_minutes=scheduled,
        downtime_minutes=downtime,
        total_planned=total_planned,
        total_produced=total_produced,
        total_rejects=total_rejects,
        record_count=len(machine_records),
        active_order_id=active_order.id if active_order else None,
        shift=classify_shift(now).value,
        window_start=segment.start,
        window_end=segment.end,
    )

    if with_analysis:
        analysis = diagnose_machine(metrics, machine_records, active_order, catalog)
        metrics.issues = analysis['issues']
        metrics.recommendations = analysis['recommendations']

    logger.info(
        f"Machine {machine_id} OEE: A={availability:.1f}% P={performance:.1f}% "
        f"Q={quality:.1f}% OEE={oee:.1f}% ({len(machine_records)} records)"
    )
    return metrics


def diagnose_machine(
    metrics: MachineOEE,
    machine_records: List[ProductionRecord],
    active_order: Optional[ProductionOrder],
    catalog: MaterialCatalog
) -> Dict[str, List[str]]:
    """
    Turn a machine's scores into issues and recommendations.

    Thresholds:
    - Availability: < 70 critical, < 85 low
    - Performance: < 50 critical, < 70 low, < 80 moderate
    - Quality: < 85 critical, < 92 low, < 95 moderate
    - Cycle time: average above 1.2x the material's ideal cycle time
    - Efficiency trend: last 5 records moving more than 10 points
    - Plan attainment: produced above plan, or below 70% of plan

    Returns:
        Dictionary with 'issues' and 'recommendations' lists
    """
    issues: List[str] = []
    recommendations: List[str] = []

    availability = metrics.availability
    if availability < 85:
        if availability < 70:
            issues.append(f"Critical availability ({availability:.1f}%) - possible equipment failure")
            recommendations.append("Urgent technical intervention - check critical systems")
            recommendations.append("Review failure logs for the last 24h")
        else:
            issues.append(f"Low availability ({availability:.1f}%) - frequent stops")
            recommendations.append("Review preventive maintenance schedule")
            recommendations.append("Investigate causes of micro-stops")

    performance = metrics.performance
    if performance < 80:
        if performance < 50:
            issues.append(f"Critical performance ({performance:.1f}%) - far below target")
            recommendations.append("Review machine setup and operating parameters")
            recommendations.append("Schedule operator training")
        elif performance < 70:
            issues.append(f"Low performance ({performance:.1f}%) - reduced speed")
            recommendations.append("Optimize machine cycle speed")
            recommendations.append("Check wear of critical components")
        else:
            issues.append(f"Moderate performance ({performance:.1f}%) - room for improvement")
            recommendations.append("Apply incremental process improvements")
            recommendations.append("Review standard operating procedures")

    quality = metrics.quality
    if quality < 95:
        defect_rate = (
            metrics.total_rejects / metrics.total_produced * 100
            if metrics.total_produced > 0 else 0.0
        )
        if quality < 85:
            issues.append(f"Critical quality ({quality:.1f}%) - defect rate {defect_rate:.1f}%")
            recommendations.append("Full audit of the quality process")
            recommendations.append("Calibrate measuring equipment")
        elif quality < 92:
            issues.append(f"Low quality ({quality:.1f}%) - defects above acceptable level")
            recommendations.append("Pareto analysis of defect types")
            recommendations.append("Introduce statistical process control")
        else:
            issues.append(f"Moderate quality ({quality:.1f}%) - minor adjustments needed")
            recommendations.append("Keep monitoring process variation")

    recent = machine_records[-5:]
    if len(recent) >= 3:
        trend = (recent[-1].efficiency_percentage or 0) - (recent[0].efficiency_percentage or 0)
        if trend < -10:
            issues.append("Efficiency trending down")
            recommendations.append("Investigate causes of the performance drop")
        elif trend > 10:
            recommendations.append("Efficiency trending up - replicate current practices")

    if active_order is not None and machine_records:
        material = catalog.get(active_order.product_name)
        ideal = material.ideal_cycle_time_minutes if material else None
        if ideal:
            avg_cycle_time = sum(r.cycle_time_minutes or 0 for r in machine_records) / len(machine_records)
            if avg_cycle_time > ideal * 1.2:
                issues.append(
                    f"High cycle time ({avg_cycle_time:.2f}min vs {ideal:.2f}min ideal)"
                )
                recommendations.append("Optimize the sequence of operations")

    if metrics.oee > 85:
        recommendations.append("Excellent performance - document best practices")
    elif metrics.oee > 75:
        recommendations.append("Good performance - focus on incremental improvements")

    attainment = (
        metrics.total_produced / metrics.total_planned * 100
        if metrics.total_planned > 0 else 0.0
    )
    if attainment > 100:
        recommendations.append("Production above plan - consider increasing capacity")
    elif attainment < 70:
        issues.append(f"Under-utilized capacity ({attainment:.1f}% of plan)")
        recommendations.append("Review production planning")

    return {'issues': issues, 'recommendations': recommendations}


def summarize_machines(machines: List[MachineOEE]) -> dict:
    """
    Fleet-level averages over several machines.

    Returns:
        Dictionary with machine_count, avg_oee, avg_availability,
        avg_performance, avg_quality (0.0 with no machines),
        critical_machines and excellent_machines counts
    """
    if not machines:
        return {
            'machine_count': 0,
            'avg_oee': 0.0,
            'avg_availability': 0.0,
            'avg_performance': 0.0,
            'avg_quality': 0.0,
            'critical_machines': 0,
            'excellent_machines': 0,
        }

    df = pd.DataFrame([m.to_dict() for m in machines])
    criticality = [m.criticality for m in machines]

    return {
        'machine_count': len(machines),
        'avg_oee': float(df['oee'].mean()),
        'avg_availability': float(df['availability'].mean()),
        'avg_performance': float(df['performance'].mean()),
        'avg_quality': float(df['quality'].mean()),
        'critical_machines': criticality.count('critical'),
        'excellent_machines': criticality.count('excellent'),
    }


def machine_statuses_from_orders(orders: Iterable[ProductionOrder]) -> Dict[str, str]:
    """
    Derive machine status from its orders.

    A machine is 'running' when any of its orders is running, otherwise
    'idle'. Orders without a machine_id are ignored.
    """
    statuses: Dict[str, str] = {}
    for order in orders:
        if order.machine_id is None:
            continue
        if order.status == 'running':
            statuses[order.machine_id] = 'running'
        else:
            statuses.setdefault(order.machine_id, 'idle')
    return statuses


def calculate_productivity(
    records: Iterable[ProductionRecord],
    orders: Iterable[ProductionOrder],
    machine_statuses: Dict[str, str]
) -> dict:
    """
    Plan attainment, quality rate and machine utilization over a set of
    records and orders.

    Args:
        records: Production records in scope
        orders: Production orders in scope (planned quantities are summed)
        machine_statuses: Machine id -> status ('running' counts as in use)

    Returns:
        Dictionary with:
        - total_planned, total_produced, total_defective
        - production_efficiency: produced / planned * 100 (0 with nothing planned)
        - quality_rate: good / produced * 100 (100 with nothing produced)
        - utilization_rate: running / total machines * 100 (0 with no machines)
        - running_machines, total_machines
    """
    records = list(records)
    total_planned = sum(o.planned_quantity for o in orders)
    total_produced = sum(r.produced_quantity for r in records)
    total_defective = sum(r.reject_quantity for r in records)

    running_machines = sum(1 for status in machine_statuses.values() if status == 'running')
    total_machines = len(machine_statuses)

    return {
        'total_planned': total_planned,
        'total_produced': total_produced,
        'total_defective': total_defective,
        'production_efficiency': (
            total_produced / total_planned * 100 if total_planned > 0 else 0.0
        ),
        'quality_rate': (
            (total_produced - total_defective) / total_produced * 100
            if total_produced > 0 else 100.0
        ),
        'utilization_rate': (
            running_machines / total_machines * 100 if total_machines > 0 else 0.0
        ),
        'running_machines': running_machines,
        'total_machines': total_machines,
    }


PRIORITY_ORDER = {'urgent': 4, 'high': 3, 'medium': 2, 'low': 1}


def fleet_recommendations(summary: dict, productivity: dict) -> List[Dict[str, Any]]:
    """
    Fleet-level recommendations from summarize_machines() and
    calculate_productivity() results.

    Score rules apply only when at least one machine was summarized; the
    capacity rule needs planned quantity and the utilization rule needs
    known machines.

    Returns:
        List of {type, title, description, action, priority}, most urgent first
    """
    recs: List[Dict[str, Any]] = []

    def add(kind, title, description, action, priority):
        recs.append({
            'type': kind,
            'title': title,
            'description': description,
            'action': action,
            'priority': priority,
        })

    if summary.get('machine_count', 0) > 0:
        avg_performance = summary['avg_performance']
        if avg_performance < 70:
            add("critical", "Critical fleet performance",
                f"Average performance of {avg_performance:.1f}% is far below target (>80%)",
                "Start an immediate recovery plan on all machines", "urgent")
        elif avg_performance < 80:
            add("warning", "Performance below expectations",
                f"Average performance of {avg_performance:.1f}% needs improvement",
                "Review processes and apply incremental improvements", "high")

        avg_availability = summary['avg_availability']
        if avg_availability < 85:
            lost_hours = (100 - avg_availability) * 0.01 * NOMINAL_SHIFT_HOURS
            add("warning", "Availability compromised",
                f"Availability of {avg_availability:.1f}% costs {lost_hours:.1f}h per shift",
                "Step up preventive maintenance and cut setup time", "high")

        avg_quality = summary['avg_quality']
        if avg_quality < 95:
            add("alert", "Quality problems detected",
                f"Quality of {avg_quality:.1f}% means {100 - avg_quality:.1f}% of output is lost",
                "Introduce statistical process control and calibrate equipment", "high")

        if summary['critical_machines'] > 0:
            add("critical", "Machines in critical state",
                f"{summary['critical_machines']} machine(s) below 60% OEE",
                "Urgent technical intervention, prioritise corrective maintenance", "urgent")

        if summary['excellent_machines'] > 0:
            add("success", "Excellent performance detected",
                f"{summary['excellent_machines']} machine(s) above 85% OEE",
                "Document and replicate their practices on other machines", "medium")

        if summary['avg_oee'] > 75:
            add("success", "Optimization opportunity",
                "Stable operation, a good moment for incremental improvements",
                "Start a continuous improvement project", "low")

    if productivity.get('total_planned', 0) > 0:
        capacity = productivity['production_efficiency']
        if capacity > 95:
            add("success", "High capacity utilization",
                f"{capacity:.1f}% of planned capacity in use",
                "Consider expanding capacity or relieving bottlenecks", "medium")
        elif capacity < 70:
            add("warning", "Capacity under-utilized",
                f"Only {capacity:.1f}% of planned capacity in use",
                "Review production planning and identify bottlenecks", "medium")

    if productivity.get('total_machines', 0) > 0 and productivity['utilization_rate'] < 60:
        add("alert", "Low machine utilization",
            f"Only {productivity['running_machines']}/{productivity['total_machines']} "
            f"machines running ({productivity['utilization_rate']:.1f}%)",
            "Improve production sequencing and reduce idle machines", "medium")

    # Stable sort keeps rule order within a priority
    return sorted(recs, key=lambda rec: PRIORITY_ORDER[rec['priority']], reverse=True)
