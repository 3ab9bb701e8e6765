"""Shared row/column helpers for both storage layouts.

Covers path templating, even down-sampling, turning raw parquet rows into
flat ``series name -> float`` rows, and language-instruction extraction.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from typing import Any, TypeVar

import numpy as np

from episcope.core.coerce import to_finite_number
from episcope.core.models import DatasetDescriptor

T = TypeVar("T")

CHUNK_PAD = 3
FILE_PAD = 3
EPISODE_PAD = 6

EXCLUDED_COLUMNS_V2 = ("timestamp", "frame_index", "episode_index", "index", "task_index")
EXCLUDED_COLUMNS_V3 = ("index", "task_index", "episode_index", "frame_index", "next.done")

_TEMPLATE_VAR = re.compile(r"\{(\w+)(?::\d+d)?\}")


def format_path_template(template: str, **values: Any) -> str:
    """Fill an info.json path template with pre-formatted values.

    Format specs such as ``{episode_index:06d}`` are stripped and the raw
    replacement is used as-is, so callers pass already zero-padded strings.
    Unknown variables are left untouched.

    Example:
        >>> format_path_template(
        ...     "data/chunk-{episode_chunk:03d}/episode_{episode_index:06d}.parquet",
        ...     episode_chunk="000", episode_index="000042")
        'data/chunk-000/episode_000042.parquet'
    """

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        return str(values[key]) if key in values else match.group(0)

    return _TEMPLATE_VAR.sub(_replace, template)


def pad(value: int, width: int) -> str:
    return str(value).zfill(width)


def evenly_sample_indices(length: int, target: int) -> list[int]:
    """Pick ``target`` indices spread evenly over ``range(length)``.

    Indices are ``round(i * (length - 1) / (target - 1))``; collisions from
    rounding are filled with the lowest unused indices. Result is sorted.
    """
    if length <= 0:
        return []
    if target >= length:
        return list(range(length))
    if target <= 1:
        return [0]

    sampled: set[int] = set()
    for i in range(target):
        sampled.add(_round_half_up(i * (length - 1) / (target - 1)))

    i = 0
    while len(sampled) < target and i < length:
        sampled.add(i)
        i += 1

    return sorted(sampled)


def evenly_sample(items: Sequence[T], max_count: int) -> list[T]:
    """Down-sample a sequence to at most ``max_count`` evenly spaced items."""
    if len(items) <= max_count:
        return list(items)
    return [items[i] for i in evenly_sample_indices(len(items), max_count)]


def _round_half_up(x: float) -> int:
    return int(np.floor(x + 0.5))


def chartable_columns(
    descriptor: DatasetDescriptor, excluded: Sequence[str]
) -> dict[str, list[str]]:
    """Map each chartable, non-excluded feature to its series names."""
    return {
        name: feature.series_names()
        for name, feature in descriptor.features.items()
        if feature.is_chartable and name not in excluded
    }


def flatten_row(
    row: dict[str, Any],
    descriptor: DatasetDescriptor,
    columns: dict[str, list[str]],
    excluded: Sequence[str],
    *,
    scalars_use_series_name: bool = False,
) -> dict[str, float]:
    """Flatten one parquet row into ``series name -> value``.

    Vector cells expand element-wise into the feature's series names
    (extra elements beyond the declared names are dropped). Scalar cells map
    to the feature name, or to the feature's first series name when
    ``scalars_use_series_name`` is set. Booleans become 1.0 / 0.0;
    non-numeric values are skipped.
    """
    flat: dict[str, float] = {}
    for key, value in row.items():
        if key == "timestamp" or key in excluded:
            continue
        if descriptor.feature(key) is None:
            continue

        names = columns.get(key)
        if isinstance(value, (list, tuple, np.ndarray)):
            if names is None:
                continue
            for name, element in zip(names, value):
                number = to_finite_number(element)
                flat[name] = number if number is not None else float("nan")
            continue

        number = to_finite_number(value)
        if number is None:
            continue
        if scalars_use_series_name and names:
            flat[names[0]] = number
        else:
            flat[key] = number
    return flat


def ignored_columns(descriptor: DatasetDescriptor, min_rank: int) -> list[str]:
    """Chartable-dtype features whose rank is above ``min_rank``."""
    return [
        name
        for name, feature in descriptor.features.items()
        if feature.dtype in ("float32", "int32") and len(feature.shape) > min_rank
    ]


def to_matrix(cells: Sequence[Any], dim: int) -> np.ndarray:
    """Stack per-frame vector cells into a (T, dim) float array.

    Short or missing cells are padded with 0, long ones truncated.
    """
    matrix = np.zeros((len(cells), dim), dtype=np.float64)
    for t, cell in enumerate(cells):
        if cell is None:
            continue
        values = np.asarray(cell, dtype=np.float64).ravel()[:dim]
        matrix[t, : len(values)] = values
    return np.nan_to_num(matrix, nan=0.0, posinf=0.0, neginf=0.0)


# ── Task / language instruction extraction ──────────────────────


def language_instructions(row: dict[str, Any]) -> list[str]:
    """Collect ``language_instruction``, ``language_instruction_2``, ... from a row."""
    found: list[str] = []
    if isinstance(row.get("language_instruction"), str):
        found.append(row["language_instruction"])

    num = 2
    while isinstance(row.get(f"language_instruction_{num}"), str):
        found.append(row[f"language_instruction_{num}"])
        num += 1
    return found


def task_from_rows(rows: Sequence[dict[str, Any]]) -> str | None:
    """Resolve task text from the episode's own rows.

    Checks language instructions on the first row, then on the middle and
    last rows, then a string ``task`` field on the first row.
    """
    if not rows:
        return None

    instructions = language_instructions(rows[0])
    if not instructions and len(rows) > 1:
        for idx in (len(rows) // 2, len(rows) - 1):
            instructions = language_instructions(rows[idx])
            if instructions:
                break

    if instructions:
        return "\n".join(instructions)

    task = rows[0].get("task")
    if isinstance(task, str):
        return task
    return None
