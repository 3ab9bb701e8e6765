"""Episode-length statistics."""

from episcope.stats.lengths import episode_length_stats, length_histogram
from episcope.stats.models import EpisodeLength, EpisodeLengthStats, HistogramBin

__all__ = [
    "EpisodeLength",
    "EpisodeLengthStats",
    "HistogramBin",
    "episode_length_stats",
    "length_histogram",
]
