"""
Tests for shared helpers: clock, day arithmetic and markdown tables.

Run with: pytest tests/test_utils.py -v
"""

from datetime import date, datetime

import numpy as np
import pandas as pd

from retention.config import RiskLevel
from retention.utils import days_between, format_dataframe_as_markdown, utcnow


class TestClock:

    def test_utcnow_is_naive_whole_seconds(self):
        value = utcnow()
        assert value.tzinfo is None
        assert value.microsecond == 0

    def test_days_between_ignores_time_of_day(self):
        assert days_between(datetime(2024, 6, 1, 1, 0), datetime(2024, 5, 31, 23, 0)) == 1
        assert days_between(date(2024, 6, 1), "2024-05-25") == 7


# =============================================================================
# TestMarkdownTable
# =============================================================================


class TestMarkdownTable:
    """Rendering of report rows."""

    def test_missing_values_render_empty(self):
        df = pd.DataFrame(
            {
                "Path": ["low → high", "low → medium"],
                "Avg Hours": [192.0, np.nan],
                "Last Seen": [pd.Timestamp("2024-06-01"), pd.NaT],
            }
        )

        lines = format_dataframe_as_markdown(df).splitlines()

        assert lines[0] == "| Path | Avg Hours | Last Seen |"
        assert lines[1] == "| --- | ---: | --- |"
        assert lines[2] == "| low → high | 192.00 | 2024-06-01 00:00:00 |"
        assert lines[3] == "| low → medium |  |  |"
        assert "nan" not in lines[3].lower()

    def test_enum_and_pipe_cells(self):
        df = pd.DataFrame({"Severity": [RiskLevel.HIGH], "Reason": ["a | b"]})

        text = format_dataframe_as_markdown(df)

        assert "| high | a \\| b |" in text

    def test_truncation_note(self):
        df = pd.DataFrame({"Count": range(5)})

        text = format_dataframe_as_markdown(df, max_rows=2)

        rows = [line for line in text.splitlines() if line.startswith("| ")]
        assert rows[2:] == ["| 0 |", "| 1 |"]
        assert text.endswith("*Showing 2 of 5 rows.*")

    def test_empty(self):
        assert format_dataframe_as_markdown(pd.DataFrame()) == "*No data available.*"
