"""
Shift Aggregator
Groups production records of the current production day by shift and sums
their tonnage, with a per-shift TTL cache.

Cache behaviour:
- Cache entries are stamped in local wall-clock time, so timezone-aware and
  naive `now` values can be mixed on one aggregator.
- A valid cache entry is authoritative for its shift until it expires, even
  if newer records for that shift are present in the input. Callers that
  report new production should call invalidate() for the shift.
- When all three shifts hit the cache, records are not scanned at all.
"""
import logging
import threading
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import pandas as pd

from ..core.cache import TonnageCache
from ..core.calculations.tonnage import (
    MaterialCatalog,
    calculate_tonnage,
    material_tonnage,
)
from ..core.models import ProductionOrder, ProductionRecord, Shift
from ..core.time_windows.shifts import (
    NOMINAL_SHIFT_HOURS,
    classify_shift,
    is_same_production_day,
    production_day_of,
    to_local_naive,
)
from ..utils.diagnostics import (
    DiagnosticLog,
    INVALID_TIME_RANGE,
    MALFORMED_WEIGHT,
    MATERIAL_NOT_FOUND,
    ORDER_NOT_FOUND,
    emit,
)

logger = logging.getLogger(__name__)

SHIFTS = (Shift.MORNING, Shift.AFTERNOON, Shift.NIGHT)


def resolve_shift(record: ProductionRecord) -> Shift:
    """
    Shift a record is booked on.

    Uses the shift stored on the record when present; older records without
    one fall back to classifying recorded_at.
    """
    if record.shift is not None:
        return record.shift
    return classify_shift(record.recorded_at)


def index_orders(orders: Iterable[ProductionOrder]) -> Dict[str, ProductionOrder]:
    """Map order id -> order (first occurrence wins)"""
    by_id: Dict[str, ProductionOrder] = {}
    for order in orders:
        by_id.setdefault(order.id, order)
    return by_id


class ShiftAggregator:
    """Per-shift tonnage and statistics for the current production day."""

    def __init__(
        self,
        catalog: MaterialCatalog,
        cache: Optional[TonnageCache] = None,
        diagnostics: Optional[DiagnosticLog] = None,
        statistics_shift_hours: Optional[float] = None
    ):
        """
        Args:
            catalog: Material reference table
            cache: Tonnage cache; a fresh one is created when omitted
            diagnostics: Optional collector for degraded paths
            statistics_shift_hours: Denominator for per-shift averages
                                    (defaults to NOMINAL_SHIFT_HOURS)
        """
        self.catalog = catalog
        self.cache = cache if cache is not None else TonnageCache()
        self.diagnostics = diagnostics
        self.statistics_shift_hours = (
            statistics_shift_hours
            if statistics_shift_hours is not None
            else NOMINAL_SHIFT_HOURS
        )
        self._lock = threading.RLock()

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    def _records_for_day(
        self,
        records: Iterable[ProductionRecord],
        now: datetime
    ) -> List[ProductionRecord]:
        """Records booked on the production day containing `now`"""
        return [r for r in records if is_same_production_day(r.recorded_at, now)]

    def _record_tonnage(
        self,
        record: ProductionRecord,
        orders_by_id: Dict[str, ProductionOrder]
    ) -> Optional[float]:
        """Tonnage of one record, or None if its order is unknown"""
        order = orders_by_id.get(record.order_id)
        if order is None:
            emit(
                self.diagnostics, ORDER_NOT_FOUND,
                f"Order not found for record {record.id}: {record.order_id}",
                logger, record_id=record.id, order_id=record.order_id,
            )
            return None

        return calculate_tonnage(
            order.product_name, record.produced_quantity, self.catalog, self.diagnostics
        )

    # ------------------------------------------------------------
    # Tonnage by shift
    # ------------------------------------------------------------

    def aggregate_tonnage_by_shift(
        self,
        records: Iterable[ProductionRecord],
        orders: Iterable[ProductionOrder],
        now: datetime
    ) -> Dict[Shift, float]:
        """
        Tonnes per shift for the production day containing `now`.

        Args:
            records: Production records (any order, any day)
            orders: Production orders referenced by the records
            now: Current time

        Returns:
            Dictionary {Shift.MORNING: t, Shift.AFTERNOON: t, Shift.NIGHT: t}

        Example:
            >>> aggregator = ShiftAggregator(catalog)
            >>> totals = aggregator.aggregate_tonnage_by_shift(records, orders, now)
            >>> print(f"Morning: {totals[Shift.MORNING]:.3f} t")
        """
        now = to_local_naive(now)
        day = production_day_of(now)

        with self._lock:
            cached = {shift: self.cache.get(day, shift, now) for shift in SHIFTS}

            if all(value is not None for value in cached.values()):
                logger.debug(f"All shifts cached for production day {day}")
                return dict(cached)

            orders_by_id = index_orders(orders)
            day_records = self._records_for_day(records, now)

            computed = {shift: 0.0 for shift in SHIFTS}
            for record in day_records:
                tonnage = self._record_tonnage(record, orders_by_id)
                if tonnage is None:
                    continue
                computed[resolve_shift(record)] += tonnage

            result: Dict[Shift, float] = {}
            for shift in SHIFTS:
                if cached[shift] is not None:
                    result[shift] = cached[shift]
                else:
                    result[shift] = computed[shift]
                    self.cache.put(day, shift, computed[shift], now)

        logger.info(
            f"Tonnage by shift for {day} ({len(day_records)} records): "
            + ", ".join(f"{s.value}={result[s]:.3f}t" for s in SHIFTS)
        )
        return result

    def invalidate(self, now: datetime, shift: Optional[Shift] = None) -> int:
        """
        Clear cached tonnage for the production day containing `now`.

        Args:
            now: Any time inside the production day
            shift: Only clear this shift; all three when omitted

        Returns:
            Number of cache entries removed
        """
        day = production_day_of(to_local_naive(now))
        with self._lock:
            if shift is None:
                return self.cache.clear_day(day)
            return int(self.cache.clear(day, Shift.parse(shift)))

    # ------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------

    def calculate_average_production_per_hour(
        self,
        records: Iterable[ProductionRecord],
        orders: Iterable[ProductionOrder],
        shift_hours: float = NOMINAL_SHIFT_HOURS
    ) -> float:
        """
        Average tonnes per hour over the given records.

        Returns:
            Total tonnage / shift_hours, or 0.0 if there are no records or
            shift_hours is not positive
        """
        records = list(records)
        if shift_hours <= 0:
            emit(
                self.diagnostics, INVALID_TIME_RANGE,
                f"Non-positive shift length: {shift_hours}h",
                logger, shift_hours=shift_hours,
            )
            return 0.0
        if not records:
            return 0.0

        orders_by_id = index_orders(orders)
        total = 0.0
        for record in records:
            tonnage = self._record_tonnage(record, orders_by_id)
            if tonnage is not None:
                total += tonnage

        return total / shift_hours

    def calculate_shift_statistics(
        self,
        records: Iterable[ProductionRecord],
        orders: Iterable[ProductionOrder],
        now: datetime
    ) -> Dict[Shift, Dict[str, float]]:
        """
        Per-shift totals for the production day containing `now`.

        The average uses a fixed shift length (statistics_shift_hours),
        not the time elapsed in the shift.

        Returns:
            Dictionary keyed by Shift with:
            - total: Tonnes
            - average: Tonnes per hour
            - record_count: Records booked on the shift
        """
        orders_by_id = index_orders(orders)
        stats = {
            shift: {'total': 0.0, 'average': 0.0, 'record_count': 0}
            for shift in SHIFTS
        }

        for record in self._records_for_day(records, now):
            shift_stats = stats[resolve_shift(record)]
            shift_stats['record_count'] += 1
            tonnage = self._record_tonnage(record, orders_by_id)
            if tonnage is not None:
                shift_stats['total'] += tonnage

        for shift_stats in stats.values():
            shift_stats['average'] = shift_stats['total'] / self.statistics_shift_hours

        return stats

    def shift_statistics_frame(
        self,
        records: Iterable[ProductionRecord],
        orders: Iterable[ProductionOrder],
        now: datetime
    ) -> pd.DataFrame:
        """
        Shift statistics as a DataFrame for reporting.

        Returns:
            DataFrame with columns: shift, total_tonnes, average_tonnes_per_hour,
            record_count (one row per shift, Morning first)
        """
        stats = self.calculate_shift_statistics(records, orders, now)
        return pd.DataFrame([
            {
                'shift': shift.value,
                'total_tonnes': values['total'],
                'average_tonnes_per_hour': values['average'],
                'record_count': values['record_count'],
            }
            for shift, values in stats.items()
        ])

    def calculate_current_shift_total_tonnage(
        self,
        records: Iterable[ProductionRecord],
        orders: Iterable[ProductionOrder],
        now: datetime
    ) -> dict:
        """
        Tonnage of the shift running at `now`, broken down by material.

        Records whose order or material cannot be resolved, or whose material
        weight is malformed, are left out of both the total and the breakdown.

        Returns:
            Dictionary with:
            - total_tonnage: Tonnes in the current shift
            - material_breakdown: List of {name, tonnage, quantity} in order
              of first appearance
        """
        current_shift = classify_shift(now)
        orders_by_id = index_orders(orders)
        rows = []

        for record in self._records_for_day(records, now):
            if resolve_shift(record) != current_shift:
                continue

            order = orders_by_id.get(record.order_id)
            if order is None:
                emit(
                    self.diagnostics, ORDER_NOT_FOUND,
                    f"Order not found for record {record.id}: {record.order_id}",
                    logger, record_id=record.id, order_id=record.order_id,
                )
                continue

            material = self.catalog.get(order.product_name)
            if material is None:
                emit(
                    self.diagnostics, MATERIAL_NOT_FOUND,
                    f"Material not found: {order.product_name}",
                    logger, product_name=order.product_name,
                )
                continue
            if material.weight_per_unit_kg is None:
                emit(
                    self.diagnostics, MALFORMED_WEIGHT,
                    f"Malformed weight for material {material.name}: {material.raw_weight!r}",
                    logger, material=material.name, raw_weight=material.raw_weight,
                )
                continue

            rows.append({
                'name': material.name,
                'tonnage': material_tonnage(material, record.produced_quantity),
                'quantity': record.produced_quantity,
            })

        if not rows:
            return {'total_tonnage': 0.0, 'material_breakdown': []}

        df = pd.DataFrame(rows)
        grouped = (
            df.groupby('name', sort=False)
            .agg(tonnage=('tonnage', 'sum'), quantity=('quantity', 'sum'))
            .reset_index()
        )

        breakdown = [
            {
                'name': row['name'],
                'tonnage': float(row['tonnage']),
                'quantity': int(row['quantity']),
            }
            for row in grouped.to_dict('records')
        ]

        return {
            'total_tonnage': float(df['tonnage'].sum()),
            'material_breakdown': breakdown,
        }
