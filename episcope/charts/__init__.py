"""Chart series grouping."""

from episcope.charts.grouping import (
    MAX_SERIES_PER_GROUP,
    column_min_max,
    group_row_by_suffix,
    group_series,
)

__all__ = [
    "MAX_SERIES_PER_GROUP",
    "column_min_max",
    "group_row_by_suffix",
    "group_series",
]
