"""
Data Loaders
Reads the material reference table and exported production data from files.

The material table uses the source spreadsheet's column names:
- Codigo:   product code
- Material: material name (matches ProductionOrder.product_name)
- Und:      units per container
- Gramagem: weight per unit in kg, comma-decimal text (e.g. "0,035")
- PPm:      target units per minute (optional)
"""
import json
import logging
from pathlib import Path
from typing import List, Optional, Tuple, Union

import pandas as pd

from ..config import Config
from ..core.calculations.tonnage import MaterialCatalog
from ..core.models import ProductionOrder, ProductionRecord

logger = logging.getLogger(__name__)

MATERIAL_COLUMNS = ['Codigo', 'Material', 'Und', 'Gramagem', 'PPm']


def load_materials(
    path: Optional[Union[str, Path]] = None,
    sep: str = ';'
) -> MaterialCatalog:
    """
    Load the material reference table from CSV.

    Args:
        path: CSV file; defaults to Config.MATERIALS_PATH
        sep: Column separator (';' since weights use ',' as decimal mark)

    Returns:
        MaterialCatalog built from valid rows

    Raises:
        ValueError: If no path is given/configured or required columns are missing

    Edge Cases:
    - Empty material name: Row skipped
    - Und missing or not positive: Row skipped
    - Unparsable Gramagem: Row kept, tonnage for it degrades to 0
    """
    path = path or Config.MATERIALS_PATH
    if not path:
        raise ValueError("No materials file given and MATERIALS_PATH is not set")

    # Read everything as text; Und, Gramagem and PPm go through the comma-decimal adapter
    df = pd.read_csv(path, sep=sep, dtype=str)

    missing = [col for col in ('Material', 'Und', 'Gramagem') if col not in df.columns]
    if missing:
        raise ValueError(
            f"Materials file {path} is missing columns: {missing}. "
            f"Available columns: {list(df.columns)}"
        )

    for col in MATERIAL_COLUMNS:
        if col not in df.columns:
            df[col] = None

    df['Material'] = df['Material'].fillna('').str.strip()

    unnamed = df['Material'] == ''
    if unnamed.any():
        logger.warning(f"Skipping {int(unnamed.sum())} material rows without a name in {path}")
    df = df[~unnamed]

    rows = df[MATERIAL_COLUMNS].astype(object).where(df[MATERIAL_COLUMNS].notna(), None)
    catalog = MaterialCatalog.from_rows(rows.to_dict('records'))

    logger.info(f"Loaded {len(catalog)} materials from {path}")
    return catalog


def load_production_data(
    path: Union[str, Path]
) -> Tuple[List[ProductionRecord], List[ProductionOrder]]:
    """
    Load exported production records and orders.

    Args:
        path: JSON file shaped {"records": [...], "orders": [...]}

    Returns:
        Tuple of (records, orders)
    """
    with open(path, encoding='utf-8') as fh:
        payload = json.load(fh)

    records = [ProductionRecord.from_dict(item) for item in payload.get('records', [])]
    orders = [ProductionOrder.from_dict(item) for item in payload.get('orders', [])]

    logger.info(f"Loaded {len(records)} records and {len(orders)} orders from {path}")
    return records, orders
