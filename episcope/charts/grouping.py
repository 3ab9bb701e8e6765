"""Series grouping for episode charts.

Series that describe the same element (e.g. ``action | shoulder`` and
``observation.state | shoulder``) are kept together, and groups whose
values live on a similar order of magnitude are merged so each chart
shows comparable curves. Large merged groups are split into charts of at
most ``MAX_SERIES_PER_GROUP`` series.

Usage::

    from episcope.charts.grouping import group_series

    groups = group_series(record)
    for group in groups:
        print(group.series)
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from episcope.core.models import SERIES_NAME_DELIMITER, ChartGroup, EpisodeRecord

MAX_SERIES_PER_GROUP = 6

# Max |log10| distance between two groups' min (and max) to share a chart
SCALE_GROUPING_THRESHOLD = 2.0
LOG_EPSILON = 1e-9


@dataclass
class GroupStats:
    """Combined value range of one suffix group."""

    min: float
    max: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.min) and math.isfinite(self.max)

    @property
    def is_constant(self) -> bool:
        return self.min == self.max


def build_suffix_groups(series_names: Sequence[str]) -> dict[str, list[str]]:
    """Partition non-timestamp series by the element after ``" | "``.

    Names without the delimiter form their own group keyed by the name.
    """
    groups: dict[str, list[str]] = {}
    for name in series_names:
        if name == "timestamp":
            continue
        parts = name.split(SERIES_NAME_DELIMITER)
        suffix = parts[1] if len(parts) > 1 and parts[1] else parts[0]
        groups.setdefault(suffix, []).append(name)
    return groups


def compute_group_stats(
    rows: Sequence[dict[str, Any]], suffix_groups: Sequence[list[str]]
) -> dict[str, GroupStats]:
    """Min/max over all rows and members of each group, keyed by its first name.

    Missing and NaN values are ignored; a group without data gets
    ``(inf, -inf)``.
    """
    stats: dict[str, GroupStats] = {}
    for group in suffix_groups:
        lo, hi = math.inf, -math.inf
        for row in rows:
            for name in group:
                value = row.get(name)
                if isinstance(value, bool) or not isinstance(value, (int, float)):
                    continue
                if math.isnan(value):
                    continue
                lo = min(lo, value)
                hi = max(hi, value)
        stats[group[0]] = GroupStats(min=lo, max=hi)
    return stats


def _log_scale(value: float) -> float:
    return math.log10(abs(value) + LOG_EPSILON)


def group_by_scale(
    suffix_groups: Sequence[list[str]], stats: dict[str, GroupStats]
) -> dict[str, list[list[str]]]:
    """Greedily cluster suffix groups whose log-scaled ranges are close.

    Each unplaced group with data anchors a cluster and absorbs every later
    unplaced group whose log10 min and log10 max are both within
    ``SCALE_GROUPING_THRESHOLD``. Constant groups never join another
    cluster and stay alone when they anchor one. Groups without data are
    dropped.
    """
    clusters: dict[str, list[list[str]]] = {}
    used: set[str] = set()

    for group in suffix_groups:
        group_id = group[0]
        if group_id in used:
            continue

        anchor = stats[group_id]
        if not anchor.is_finite:
            continue

        unit = [group]
        used.add(group_id)

        if not anchor.is_constant:
            log_min, log_max = _log_scale(anchor.min), _log_scale(anchor.max)
            for other in suffix_groups:
                other_id = other[0]
                if other_id in used:
                    continue
                candidate = stats[other_id]
                if not candidate.is_finite or candidate.is_constant:
                    continue
                if (
                    abs(log_min - _log_scale(candidate.min)) <= SCALE_GROUPING_THRESHOLD
                    and abs(log_max - _log_scale(candidate.max)) <= SCALE_GROUPING_THRESHOLD
                ):
                    unit.append(other)
                    used.add(other_id)

        clusters[group_id] = unit

    return clusters


def flatten_scale_groups(
    clusters: dict[str, list[list[str]]],
    max_series: int = MAX_SERIES_PER_GROUP,
) -> list[list[str]]:
    """Order clusters largest first and split them into charts of <= max_series."""
    charts: list[list[str]] = []
    for unit in sorted(clusters.values(), key=len, reverse=True):
        merged = [name for group in unit for name in group]
        for i in range(0, len(merged), max_series):
            charts.append(merged[i : i + max_series])
    return charts


def group_row_by_suffix(row: dict[str, Any]) -> dict[str, Any]:
    """Nest series sharing a suffix under that suffix.

    ``{"timestamp": t, "action | x": 1, "state | x": 2}`` becomes
    ``{"timestamp": t, "x": {"action": 1, "state": 2}}``. A suffix with a
    single member keeps its full series name.
    """
    result: dict[str, Any] = {}
    by_suffix: dict[str, dict[str, Any]] = {}

    for key, value in row.items():
        if key == "timestamp":
            result["timestamp"] = value
            continue
        parts = key.split(SERIES_NAME_DELIMITER)
        if len(parts) == 2:
            prefix, suffix = parts
            by_suffix.setdefault(suffix, {})[prefix] = value
        else:
            result[key] = value

    for suffix, members in by_suffix.items():
        if len(members) == 1:
            prefix, value = next(iter(members.items()))
            result[f"{prefix}{SERIES_NAME_DELIMITER}{suffix}"] = value
        else:
            result[suffix] = members

    return result


def group_series(
    source: EpisodeRecord | Sequence[dict[str, Any]],
    series_names: Sequence[str] | None = None,
    max_series: int = MAX_SERIES_PER_GROUP,
) -> list[ChartGroup]:
    """Partition an episode's series into display-ready chart groups.

    Args:
        source: EpisodeRecord, or raw rows (``series name -> value``).
        series_names: Names to group; defaults to the record's series or
            the keys of the first row.
        max_series: Maximum series per chart.

    Returns:
        ChartGroups, each with its series and re-nested per-row data.
    """
    if isinstance(source, EpisodeRecord):
        rows = source.rows
        names = list(series_names or source.series_names)
    else:
        rows = list(source)
        names = list(series_names or (rows[0].keys() if rows else []))

    suffix_groups = list(build_suffix_groups(names).values())
    stats = compute_group_stats(rows, suffix_groups)
    charts = flatten_scale_groups(group_by_scale(suffix_groups, stats), max_series)

    groups = []
    for series in charts:
        keep = ["timestamp", *series]
        group_rows = [
            group_row_by_suffix({k: row[k] for k in keep if k in row}) for row in rows
        ]
        groups.append(ChartGroup(series=series, rows=group_rows))
    return groups


def column_min_max(groups: Sequence[ChartGroup]) -> dict[str, tuple[float, float]]:
    """Per-series (min, max) across chart groups, rounded to 3 decimals.

    Nested suffix entries are reported as ``"<suffix> | <prefix>"``.
    """
    ranges: dict[str, list[float]] = {}

    def _track(key: str, value: Any) -> None:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return
        if not math.isfinite(value):
            return
        if key not in ranges:
            ranges[key] = [value, value]
        else:
            ranges[key][0] = min(ranges[key][0], value)
            ranges[key][1] = max(ranges[key][1], value)

    for group in groups:
        for row in group.rows:
            for key, value in row.items():
                if key == "timestamp":
                    continue
                if isinstance(value, dict):
                    for sub_key, sub_value in value.items():
                        _track(f"{key}{SERIES_NAME_DELIMITER}{sub_key}", sub_value)
                else:
                    _track(key, value)

    return {key: (round(lo, 3), round(hi, 3)) for key, (lo, hi) in ranges.items()}
