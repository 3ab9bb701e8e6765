"""Episode-length statistics.

Aggregates per-episode frame counts into duration summaries and an
adaptively binned histogram whose bin width is a "nice" number
(1, 2, 2.5, 5 or 10 times a power of ten) and whose range ignores the
outer 1% on each side.

Usage::

    from episcope.stats.lengths import episode_length_stats

    stats = episode_length_stats([(0, 120), (1, 95), (2, 130)], fps=30)
    print(stats.mean_seconds, [b.label for b in stats.histogram])
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from episcope.stats.models import EpisodeLength, EpisodeLengthStats, HistogramBin

TOP_N = 5
MIN_BINS = 10
MAX_BINS = 50
NICE_STEPS = (1.0, 2.0, 2.5, 5.0, 10.0)


def episode_length_stats(
    lengths: Sequence[tuple[int, int]], fps: float
) -> EpisodeLengthStats | None:
    """Summarize episode durations.

    Args:
        lengths: (episode_index, frame count) pairs.
        fps: Dataset frame rate.

    Returns:
        EpisodeLengthStats, or None when ``lengths`` is empty.
    """
    if not lengths:
        return None

    fps = fps if fps > 0 else 1.0
    entries = [
        EpisodeLength(episode_index=int(ep), frames=int(frames), seconds=round(frames / fps, 2))
        for ep, frames in lengths
    ]
    by_length = sorted(entries, key=lambda e: e.seconds)
    values = [e.seconds for e in by_length]
    n = len(values)

    mean = round(sum(values) / n, 2)
    if n % 2 == 1:
        median = values[n // 2]
    else:
        median = round((values[n // 2 - 1] + values[n // 2]) / 2, 2)
    std = round(math.sqrt(sum((v - mean) ** 2 for v in values) / n), 2)

    return EpisodeLengthStats(
        num_episodes=n,
        mean_seconds=mean,
        median_seconds=median,
        std_seconds=std,
        min_seconds=values[0],
        max_seconds=values[-1],
        shortest=by_length[:TOP_N],
        longest=list(reversed(by_length[-TOP_N:])),
        histogram=length_histogram(values),
    )


def nice_bin_width(raw: float) -> float:
    """Smallest "nice" width >= raw."""
    magnitude = 10 ** math.floor(math.log10(raw))
    for step in NICE_STEPS:
        width = step * magnitude
        if width >= raw:
            return width
    return 10 * magnitude


def length_histogram(sorted_values: Sequence[float]) -> list[HistogramBin]:
    """Bin ascending durations into equal-width, nicely rounded bins.

    Values outside the 1st..99th percentile range are clamped into the
    first or last bin, so counts always sum to ``len(sorted_values)``.
    """
    n = len(sorted_values)
    if n == 0:
        return []

    lo, hi = sorted_values[0], sorted_values[-1]
    if lo == hi:
        return [HistogramBin(lo=lo, hi=hi, count=n, label=f"{lo:.1f}s")]

    p1 = sorted_values[int(n * 0.01)]
    p99 = sorted_values[max(0, math.ceil(n * 0.99) - 1)]
    value_range = (p99 - p1) or 1.0

    target = min(MAX_BINS, max(MIN_BINS, math.ceil(math.log2(n) + 1)))
    width = nice_bin_width(value_range / target)
    nice_min = math.floor(p1 / width) * width
    nice_max = math.ceil(p99 / width) * width
    num_bins = max(1, round((nice_max - nice_min) / width))

    counts = [0] * num_bins
    for v in sorted_values:
        idx = math.floor((v - nice_min) / width)
        counts[min(num_bins - 1, max(0, idx))] += 1

    bins = []
    for i, count in enumerate(counts):
        bin_lo = nice_min + i * width
        bin_hi = bin_lo + width
        bins.append(
            HistogramBin(lo=bin_lo, hi=bin_hi, count=count, label=f"{bin_lo:.1f}–{bin_hi:.1f}s")
        )
    return bins
