from datetime import datetime

import pytest

from prodtrack.core.calculations.tonnage import MaterialCatalog
from prodtrack.core.models import ProductionOrder, ProductionRecord
from prodtrack.utils.diagnostics import DiagnosticLog


@pytest.fixture
def catalog():
    return MaterialCatalog.from_rows([
        {"Codigo": "1001", "Material": "Foil-X", "Und": 10, "Gramagem": "0,05", "PPm": "100"},
        {"Codigo": "1002", "Material": "Box-20", "Und": 20, "Gramagem": "0,035", "PPm": None},
        {"Codigo": "1003", "Material": "Bad-Weight", "Und": 5, "Gramagem": "n/a", "PPm": None},
    ])


@pytest.fixture
def diagnostics():
    return DiagnosticLog()


@pytest.fixture
def orders():
    return [
        ProductionOrder(id="A", product_name="Foil-X", planned_quantity=100,
                        machine_id="M1", status="running"),
        ProductionOrder(id="B", product_name="Box-20", planned_quantity=50,
                        machine_id="M2", status="pending"),
        ProductionOrder(id="C", product_name="Legacy-Product", planned_quantity=10,
                        machine_id="M3", status="running"),
    ]


def make_record(recorded_at, order_id="A", produced=10, shift=None,
                rejects=0, downtime=0, record_id=None, **extra):
    """Helper: build a ProductionRecord from an ISO string or datetime."""
    if isinstance(recorded_at, str):
        recorded_at = datetime.fromisoformat(recorded_at)
    return ProductionRecord(
        id=record_id or f"{order_id}-{recorded_at.isoformat()}",
        order_id=order_id,
        produced_quantity=produced,
        reject_quantity=rejects,
        downtime_minutes=downtime,
        recorded_at=recorded_at,
        shift=shift,
        **extra,
    )
