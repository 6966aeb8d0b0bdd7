"""
Record source adapter.

Reads the import/export table from a local CSV or a published URL and
annotates each row with its material category and stick-equivalent so the
per-record conversions can be reviewed next to the entity audit.
"""

import re

import numpy as np
import pandas as pd

from audit_config import ConfigError
from reconcile import (
    MaterialCategory,
    RecordFields,
    classify_material,
    normalize_quantity,
    parse_quantity,
    resolve_entity,
    stick_equivalent,
)

SHEETS_HOST = 'docs.google.com/spreadsheets'


def sheet_csv_url(url: str) -> str:
    """Rewrite a Google Sheets edit link into its CSV export link."""
    if SHEETS_HOST not in url or '/export?' in url:
        return url
    match = re.search(r'gid=([0-9]+)', url)
    gid = match.group(1) if match else '0'
    base = re.sub(r'/edit.*$', '/export?format=csv', url)
    if 'export?format=csv' not in base:
        base = base.rstrip('/') + '/export?format=csv'
    return f"{base}&gid={gid}"


def load_records(source) -> pd.DataFrame:
    if isinstance(source, str):
        source = sheet_csv_url(source)
    df = pd.read_csv(source, dtype=str, keep_default_na=False)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def check_columns(df: pd.DataFrame, fields: RecordFields):
    missing = [
        f"'{name}'" for name in (fields.material, fields.quantity)
        if name not in df.columns
    ]
    if not any(name in df.columns for name in fields.entity):
        missing.append(' / '.join(f"'{name}'" for name in fields.entity))
    if missing:
        raise ConfigError(f"Columns not found in input CSV: {', '.join(missing)}")


def iter_records(df: pd.DataFrame):
    return df.to_dict('records')


def annotate_records(df: pd.DataFrame, fields: RecordFields) -> pd.DataFrame:
    empty = pd.Series('', index=df.index, dtype='object')
    material = df.get(fields.material, empty)
    quantity = df.get(fields.quantity, empty)
    unit = df.get(fields.unit, empty).astype(str).str.strip().str.upper()

    entity = pd.Series(
        [resolve_entity(row, fields) for row in iter_records(df)],
        index=df.index, dtype='object',
    )
    category = material.map(classify_material)
    parsed = quantity.map(parse_quantity)
    normalized = pd.Series(
        [normalize_quantity(q, u) for q, u in zip(parsed, unit)],
        index=df.index, dtype='float64',
    )
    sticks = pd.Series(
        [stick_equivalent(c, q, u) for c, q, u in zip(category, parsed, unit)],
        index=df.index, dtype='float64',
    )

    kept = entity.notna() & (category != MaterialCategory.UNCLASSIFIED)
    status = np.where(
        entity.isna(), 'Skipped (no entity)',
        np.where(kept, 'Aggregated', 'Discarded (unclassified)')
    )

    return pd.DataFrame({
        'Entity': entity.fillna(''),
        'Material': material,
        'Quantity': parsed,
        'Unit': unit,
        'Category': category.map(lambda c: c.value),
        'NormalizedQuantity': normalized,
        'StickEquivalent': sticks,
        'Status': status,
    })
