"""
Production Data Models

Immutable containers for the inputs consumed by the metrics engine:
- ProductionRecord: a reported quantity/downtime entry for an order
- ProductionOrder: a planned run of a product on a machine
- Material: one row of the material reference table
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


class Shift(str, Enum):
    """Factory shifts of a production day"""
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    NIGHT = "Night"

    @classmethod
    def parse(cls, value) -> "Shift":
        """
        Resolve a stored shift label.

        Accepts Shift members, English names (any case) and the Portuguese
        labels written by older records ('Manhã', 'Tarde', 'Noite').

        Raises:
            ValueError: If the label is not a known shift
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Unknown shift: {value!r}")

        label = value.strip().lower()
        if label in _SHIFT_ALIASES:
            return _SHIFT_ALIASES[label]

        raise ValueError(
            f"Unknown shift: '{value}'. "
            f"Valid options: {[s.value for s in cls]}"
        )


_SHIFT_ALIASES = {
    "morning": Shift.MORNING,
    "afternoon": Shift.AFTERNOON,
    "night": Shift.NIGHT,
    "manhã": Shift.MORNING,
    "manha": Shift.MORNING,
    "tarde": Shift.AFTERNOON,
    "noite": Shift.NIGHT,
}


def _pick(data: Dict[str, Any], *keys, default=None):
    """Return the first key present in data (snake_case or camelCase)"""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_timestamp(value) -> datetime:
    """
    Parse a timestamp from a datetime or an ISO 8601 string.

    Raises:
        TypeError: If value is None or not a datetime/string
        ValueError: If the string cannot be parsed
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        return dateutil_parser.isoparse(value)
    raise TypeError(f"Expected datetime or ISO string, got {type(value).__name__}")


@dataclass(frozen=True)
class ProductionRecord:
    """
    A production report for one order.

    Quantities are in container-units (boxes), not physical units.
    """
    id: str
    order_id: str
    produced_quantity: int
    recorded_at: datetime
    reject_quantity: int = 0
    downtime_minutes: int = 0
    shift: Optional[Shift] = None
    cycle_time_minutes: Optional[float] = None
    efficiency_percentage: Optional[float] = None

    def __post_init__(self):
        """Validate record"""
        if not isinstance(self.recorded_at, datetime):
            raise TypeError(
                f"recorded_at must be a datetime, got {type(self.recorded_at).__name__}"
            )
        for name in ("produced_quantity", "reject_quantity", "downtime_minutes"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative (record {self.id})")
        if self.shift is not None and not isinstance(self.shift, Shift):
            object.__setattr__(self, "shift", Shift.parse(self.shift))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductionRecord":
        """
        Build a record from a document with snake_case or camelCase keys.

        An unrecognised stored shift label is dropped with a warning, so the
        record falls back to classification by recorded_at.
        """
        record_id = str(_pick(data, "id", "_id", default=""))
        shift = _pick(data, "shift")
        if shift:
            try:
                shift = Shift.parse(shift)
            except ValueError:
                logger.warning(f"Ignoring unknown shift {shift!r} on record {record_id}")
                shift = None

        return cls(
            id=record_id,
            order_id=str(_pick(data, "order_id", "orderId")),
            produced_quantity=int(_pick(data, "produced_quantity", "producedQuantity", default=0)),
            reject_quantity=int(_pick(data, "reject_quantity", "rejectQuantity", default=0)),
            downtime_minutes=int(_pick(data, "downtime_minutes", "downtimeMinutes", default=0)),
            recorded_at=parse_timestamp(_pick(data, "recorded_at", "recordedAt")),
            shift=shift or None,
            cycle_time_minutes=_pick(data, "cycle_time_minutes", "cycleTimeMinutes"),
            efficiency_percentage=_pick(data, "efficiency_percentage", "efficiencyPercentage"),
        )


@dataclass(frozen=True)
class ProductionOrder:
    """A production order. machine_id and status are used for filtering only."""
    id: str
    product_name: str
    planned_quantity: int
    machine_id: Optional[str] = None
    status: Optional[str] = None

    def __post_init__(self):
        """Validate order"""
        if self.planned_quantity <= 0:
            raise ValueError(f"planned_quantity must be positive (order {self.id})")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductionOrder":
        """Build an order from a document with snake_case or camelCase keys"""
        return cls(
            id=str(_pick(data, "id", "_id")),
            product_name=str(_pick(data, "product_name", "productName", default="")),
            planned_quantity=int(_pick(data, "planned_quantity", "plannedQuantity")),
            machine_id=_pick(data, "machine_id", "machineId"),
            status=_pick(data, "status"),
        )


@dataclass(frozen=True)
class Material:
    """
    One entry of the material reference table.

    weight_per_unit_kg is None when the source weight string could not be
    parsed; raw_weight keeps the original text for diagnostics.
    """
    name: str
    units_per_container: float
    weight_per_unit_kg: Optional[float]
    code: Optional[str] = None
    target_units_per_minute: Optional[float] = None
    raw_weight: Optional[str] = None

    @property
    def ideal_cycle_time_minutes(self) -> Optional[float]:
        """Minutes per unit at the target rate"""
        if not self.target_units_per_minute or self.target_units_per_minute <= 0:
            return None
        return 1.0 / self.target_units_per_minute


@dataclass(frozen=True)
class CacheEntry:
    """Cached shift tonnage"""
    value: float
    created_at: datetime
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        """Entry is usable strictly before its expiry"""
        return now < self.expires_at
