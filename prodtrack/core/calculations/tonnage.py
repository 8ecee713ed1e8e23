"""
Tonnage Calculation Functions

Converts produced container-units into physical weight in tonnes:

    tonnes = produced_quantity * units_per_container * weight_per_unit_kg / 1000

This is the only tonnage formula in the package; every aggregate is built
from calculate_tonnage().
"""

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ..models import Material, Shift
from ..time_windows.shifts import classify_shift
from ...utils.diagnostics import (
    DiagnosticLog,
    MALFORMED_WEIGHT,
    MATERIAL_NOT_FOUND,
    emit,
)

logger = logging.getLogger(__name__)


def parse_locale_decimal(value: Union[str, float, int, None]) -> Optional[float]:
    """
    Parse a decimal written with a comma separator.

    Args:
        value: String such as "0,035", or a number

    Returns:
        Parsed float, or None if the value is empty or unparsable

    Examples:
        >>> parse_locale_decimal("0,035")
        0.035
        >>> parse_locale_decimal("abc") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", ".")
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None

    if math.isnan(number) or math.isinf(number):
        return None
    return number


class MaterialCatalog:
    """
    Read-only material reference table.

    Looks materials up by name (the product_name of an order) or by
    product code.
    """

    def __init__(self, materials: Iterable[Material]):
        self._by_name: Dict[str, Material] = {}
        self._by_code: Dict[str, Material] = {}

        for material in materials:
            # First entry wins on duplicate names
            self._by_name.setdefault(material.name, material)
            if material.code:
                self._by_code.setdefault(str(material.code), material)

    @classmethod
    def from_rows(cls, rows: Iterable[dict]) -> "MaterialCatalog":
        """
        Build a catalog from raw reference rows.

        Rows use the source table's column names: Material, Und, Gramagem,
        and optionally Codigo and PPm. Und, Gramagem and PPm may be
        comma-decimal strings. Rows whose Und is missing, unparsable or not
        positive are skipped with a warning.
        """
        materials = []
        for row in rows:
            units = parse_locale_decimal(row.get("Und"))
            if units is None or units <= 0:
                logger.warning(
                    f"Skipping material {row.get('Material')!r}: invalid Und {row.get('Und')!r}"
                )
                continue

            raw_weight = row.get("Gramagem")
            materials.append(Material(
                name=str(row["Material"]),
                units_per_container=units,
                weight_per_unit_kg=parse_locale_decimal(raw_weight),
                code=str(row["Codigo"]) if row.get("Codigo") not in (None, "") else None,
                target_units_per_minute=parse_locale_decimal(row.get("PPm")),
                raw_weight=None if raw_weight is None else str(raw_weight),
            ))
        return cls(materials)

    def get(self, name: str) -> Optional[Material]:
        """Find material by name"""
        return self._by_name.get(name)

    def get_by_code(self, code: str) -> Optional[Material]:
        """Find material by product code"""
        return self._by_code.get(str(code))

    def names(self) -> List[str]:
        return list(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def __len__(self) -> int:
        return len(self._by_name)


def material_tonnage(
    material: Material,
    produced_quantity: float,
    diagnostics: Optional[DiagnosticLog] = None
) -> float:
    """
    Apply the tonnage formula to an already resolved material.

    Returns:
        Tonnes, or 0.0 if the material's weight is malformed
    """
    if material.weight_per_unit_kg is None:
        emit(
            diagnostics, MALFORMED_WEIGHT,
            f"Malformed weight for material {material.name}: {material.raw_weight!r}",
            logger, material=material.name, raw_weight=material.raw_weight,
        )
        return 0.0

    return (produced_quantity * material.units_per_container * material.weight_per_unit_kg) / 1000


def calculate_tonnage(
    product_name: str,
    produced_quantity: float,
    catalog: MaterialCatalog,
    diagnostics: Optional[DiagnosticLog] = None
) -> float:
    """
    Calculate tonnes produced for a product.

    Args:
        product_name: Material name (ProductionOrder.product_name)
        produced_quantity: Produced container-units
        catalog: Material reference table
        diagnostics: Optional collector for degraded paths

    Returns:
        Tonnes produced; 0.0 if the material is unknown or its weight is
        malformed (never raises for reference-data problems)

    Example:
        >>> # 100 boxes x 20 units x 0.035 kg = 70 kg
        >>> calculate_tonnage("Foil-X", 100, catalog)
        0.07
    """
    material = catalog.get(product_name)
    if material is None:
        emit(
            diagnostics, MATERIAL_NOT_FOUND,
            f"Material not found: {product_name}",
            logger, product_name=product_name,
        )
        return 0.0

    return material_tonnage(material, produced_quantity, diagnostics)


def calculate_total_tonnage(
    items: Iterable[Tuple[str, float]],
    catalog: MaterialCatalog,
    diagnostics: Optional[DiagnosticLog] = None
) -> float:
    """
    Sum tonnage over (product_name, produced_quantity) pairs.

    Example:
        >>> calculate_total_tonnage([("Foil-X", 10), ("Foil-Y", 5)], catalog)
    """
    return sum(
        calculate_tonnage(product_name, quantity, catalog, diagnostics)
        for product_name, quantity in items
    )


def calculate_production_efficiency(actual_tonnage: float, target_tonnage: float) -> float:
    """
    Actual tonnage as a percentage of target (can exceed 100).

    Returns 0.0 when the target is not positive.
    """
    if target_tonnage <= 0:
        return 0.0
    return (actual_tonnage / target_tonnage) * 100


def calculate_current_shift_tonnage(
    product_code: str,
    produced_quantity: float,
    catalog: MaterialCatalog,
    now: datetime,
    diagnostics: Optional[DiagnosticLog] = None
) -> dict:
    """
    Calculate tonnage for a quantity being reported now, looked up by product code.

    Returns:
        Dictionary with:
        - tonnage: Tonnes (0.0 on missing material / malformed weight)
        - shift: Shift running at `now`
        - date: `now` as ISO string
        - material: Resolved Material or None
        - calculation: produced_quantity, units_per_container,
          weight_per_unit_kg and a human readable formula
    """
    shift: Shift = classify_shift(now)
    material = catalog.get_by_code(product_code)

    if material is None:
        emit(
            diagnostics, MATERIAL_NOT_FOUND,
            f"Material not found for code: {product_code}",
            logger, product_code=product_code,
        )
        units, weight, tonnage = 0, 0.0, 0.0
    else:
        units = material.units_per_container
        weight = material.weight_per_unit_kg or 0.0
        tonnage = material_tonnage(material, produced_quantity, diagnostics)

    return {
        'tonnage': tonnage,
        'shift': shift,
        'date': now.isoformat(),
        'material': material,
        'calculation': {
            'produced_quantity': produced_quantity,
            'units_per_container': units,
            'weight_per_unit_kg': weight,
            'formula': f"{produced_quantity} * {units:g} * {weight:g} / 1000 = {tonnage:.6f} t",
        },
    }
