"""
Shared utilities for the retention engine.

Clock, rounding, calendar-day arithmetic and markdown table rendering
used across all components.
"""

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any

import pandas as pd


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching stored timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def round2(value: float | None) -> float | None:
    """Round to 2 decimal places, passing None through."""
    if value is None:
        return None
    return round(float(value), 2)


def to_date(value: date | datetime | str) -> date:
    """Coerce a datetime, date or ISO string to a date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()


def days_between(later: date | datetime, earlier: date | datetime) -> int:
    """Whole calendar days from `earlier` to `later`."""
    return (to_date(later) - to_date(earlier)).days


def format_dataframe_as_markdown(df: pd.DataFrame, max_rows: int = 20) -> str:
    """Render report rows as a markdown table.

    Numeric columns are right-aligned, missing values render as empty
    cells and pipes inside text are escaped so reason strings cannot break
    the table.

    Args:
        df: Rows to render, one report line per row.
        max_rows: Maximum rows to include before truncation.

    Returns:
        Markdown-formatted table string.
    """
    if df.empty:
        return "*No data available.*"

    display_df = df.head(max_rows)

    headers = "| " + " | ".join(str(c) for c in display_df.columns) + " |"
    separator = "| " + " | ".join(
        "---:" if pd.api.types.is_numeric_dtype(display_df[c]) else "---"
        for c in display_df.columns
    ) + " |"

    rows = [
        "| " + " | ".join(_format_cell(v) for v in record) + " |"
        for record in display_df.itertuples(index=False, name=None)
    ]
    table = "\n".join([headers, separator, *rows])

    if len(df) > max_rows:
        table += f"\n\n*Showing {max_rows} of {len(df)} rows.*"
    return table


def _format_cell(value: Any) -> str:
    """Format a single cell value for markdown display."""
    if pd.api.types.is_scalar(value) and pd.isna(value):
        return ""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, float):
        return f"{value:.2f}"
    return str(value).replace("|", "\\|")
