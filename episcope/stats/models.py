"""Data models for episode-length statistics."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field


@dataclass
class HistogramBin:
    """One histogram bucket covering ``[lo, hi)`` (the last bin is closed)."""

    lo: float
    hi: float
    count: int
    label: str = ""


@dataclass
class EpisodeLength:
    """Length of one episode in frames and seconds."""

    episode_index: int
    frames: int
    seconds: float


@dataclass
class EpisodeLengthStats:
    """Summary of episode durations across a dataset."""

    num_episodes: int
    mean_seconds: float
    median_seconds: float
    std_seconds: float
    min_seconds: float
    max_seconds: float
    shortest: list[EpisodeLength] = field(default_factory=list)
    longest: list[EpisodeLength] = field(default_factory=list)
    histogram: list[HistogramBin] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
