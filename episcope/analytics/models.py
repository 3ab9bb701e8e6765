"""Data models for cross-episode analytics results.

Every analytic returns either its own result dataclass (tagged with a
``kind``) or ``NotComputed`` when its preconditions are not met. The
engine collects them into an ``AnalyticsReport`` with one slot per kind.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

import numpy as np

from episcope.core.models import SERIES_NAME_DELIMITER
from episcope.stats.models import HistogramBin

if TYPE_CHECKING:
    from episcope.core.models import EpisodeRecord

ANALYTIC_KINDS = (
    "autocorrelation",
    "velocity",
    "variance_heatmap",
    "multimodality",
    "alignment",
    "speed",
    "trajectory_clusters",
)


def short_name(series_name: str) -> str:
    """Last token of a ``"feature | element"`` series name."""
    return series_name.split(SERIES_NAME_DELIMITER)[-1]


@dataclass
class EpisodeTrajectory:
    """Action (and optional state) matrices of one episode.

    Attributes:
        episode_index: Episode identifier.
        actions: (T, D) action matrix.
        states: (T, S) state matrix with the same T, or None.
        action_names: D series names for the action dimensions.
        state_names: S series names for the state dimensions.
    """

    episode_index: int
    actions: np.ndarray
    states: np.ndarray | None = None
    action_names: list[str] = field(default_factory=list)
    state_names: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.actions = _as_matrix(self.actions, len(self.action_names))
        if self.states is not None:
            self.states = _as_matrix(self.states, len(self.state_names))
            if len(self.states) != len(self.actions):
                self.states = None
        if not self.action_names:
            self.action_names = [str(i) for i in range(self.num_dims)]

    @property
    def num_frames(self) -> int:
        return int(self.actions.shape[0])

    @property
    def num_dims(self) -> int:
        return int(self.actions.shape[1]) if self.actions.ndim == 2 else 0

    @classmethod
    def from_record(
        cls,
        record: EpisodeRecord,
        action_prefix: str = "action",
        state_marker: str = "state",
    ) -> "EpisodeTrajectory":
        """Build a trajectory from the flat series of a single episode.

        Action series are those whose name starts with ``action_prefix``;
        state series contain ``state_marker`` and are not action series.
        """
        names = [n for n in record.series_names if n != "timestamp"]
        action_names = [n for n in names if n.startswith(action_prefix)]
        state_names = [
            n for n in names if state_marker in n and not n.startswith(action_prefix)
        ]

        actions = np.zeros((record.num_frames, 0))
        if action_names:
            actions = np.column_stack([record.column(n) for n in action_names])
        states = None
        if state_names:
            states = np.column_stack([record.column(n) for n in state_names])

        return cls(
            episode_index=record.episode_index,
            actions=np.nan_to_num(actions),
            states=np.nan_to_num(states) if states is not None else None,
            action_names=action_names,
            state_names=state_names,
        )


def _as_matrix(values: Any, width: int) -> np.ndarray:
    matrix = np.asarray(values, dtype=np.float64)
    if matrix.size == 0:
        return matrix.reshape(0, width)
    if matrix.ndim == 1:
        return matrix.reshape(-1, 1)
    return matrix


# ── Result variants ─────────────────────────────────────────────


@dataclass
class NotComputed:
    """Placeholder for an analytic whose preconditions failed."""

    kind: str
    reason: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "computed": False, "reason": self.reason}


@dataclass
class _Result:
    def to_dict(self) -> dict:
        d = asdict(self)
        d["computed"] = True
        return d


@dataclass
class AutocorrelationResult(_Result):
    """Averaged per-dimension action autocorrelation."""

    max_lag: int
    num_episodes: int
    short_names: list[str]
    rows: list[dict[str, float]]
    decorrelation_lags: dict[str, int | None]
    suggested_chunk: int | None
    kind: str = "autocorrelation"


@dataclass
class VelocityDimension:
    """Frame-to-frame change statistics of one action dimension."""

    name: str
    motor_range: float
    std: float
    max_abs: float
    lo: float
    hi: float
    active: bool
    discrete: bool
    histogram: list[HistogramBin] = field(default_factory=list)


@dataclass
class VelocityResult(_Result):
    """Action smoothness summary."""

    num_episodes: int
    dimensions: list[VelocityDimension]
    verdict: str | None
    tip: str | None
    smooth_ratio: float
    jerky_dimensions: list[str]
    jerkiest_episodes: list[tuple[int, float]]
    kind: str = "velocity"


@dataclass
class VarianceHeatmapResult(_Result):
    """Per (time bin, dimension) population variance across episodes."""

    num_episodes: int
    time_bins: list[float]
    action_names: list[str]
    variances: list[list[float]]
    kind: str = "variance_heatmap"


@dataclass
class MultimodalityResult(_Result):
    """Bimodality coefficients per (time bin, dimension)."""

    num_episodes: int
    time_bins: list[float]
    action_names: list[str]
    coefficients: list[list[float]]
    bimodal_fraction: float
    verdict: str
    kind: str = "multimodality"


@dataclass
class AlignmentResult(_Result):
    """State-action cross-correlation envelope over lags."""

    num_episodes: int
    num_pairs: int
    pairs: list[tuple[str, str]]
    lags: list[int]
    max_curve: list[float]
    mean_curve: list[float]
    min_curve: list[float]
    peak_lag_max: int
    peak_lag_mean: int
    peak_lag_min: int
    peak_corr_max: float
    peak_corr_mean: float
    peak_corr_min: float
    lag_range_min: int
    lag_range_max: int
    fps: float = 0.0
    kind: str = "alignment"

    @property
    def control_delay(self) -> int:
        """Control delay in frames (peak lag of the mean envelope)."""
        return self.peak_lag_mean

    @property
    def control_delay_seconds(self) -> float | None:
        return self.peak_lag_mean / self.fps if self.fps > 0 else None


@dataclass
class SpeedResult(_Result):
    """Demonstrator execution speed spread."""

    num_episodes: int
    speeds: list[tuple[int, float]]
    mean: float
    std: float
    cv: float
    median: float
    histogram: list[HistogramBin]
    verdict: str
    tip: str
    low_movement_episodes: list[tuple[int, float]]
    kind: str = "speed"


@dataclass
class TrajectoryClusterResult(_Result):
    """K-means clusters of resampled trajectories and their outliers."""

    num_episodes: int
    num_clusters: int
    silhouette: float
    labels: dict[int, int]
    cluster_sizes: list[int]
    imbalance: float
    imbalanced: bool
    outliers: list[int]
    outlier_scores: dict[int, float]
    explained_variance: list[float]
    projections: dict[int, list[float]]
    kind: str = "trajectory_clusters"


AnalyticsResult = Union[
    AutocorrelationResult,
    VelocityResult,
    VarianceHeatmapResult,
    MultimodalityResult,
    AlignmentResult,
    SpeedResult,
    TrajectoryClusterResult,
    NotComputed,
]


@dataclass
class AnalyticsReport:
    """All analytics for one dataset sample, one slot per kind."""

    dataset_id: str
    num_episodes: int = 0
    fps: float = 0.0
    computed_at: str = ""
    results: dict[str, AnalyticsResult] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.computed_at:
            self.computed_at = datetime.now(timezone.utc).isoformat()

    def get(self, kind: str) -> AnalyticsResult:
        if kind not in ANALYTIC_KINDS:
            raise KeyError(kind)
        return self.results.get(kind, NotComputed(kind, "not run"))

    def computed(self, kind: str) -> Any | None:
        """Return the result for ``kind`` or None when it was not computed."""
        result = self.get(kind)
        return None if isinstance(result, NotComputed) else result

    def to_dict(self) -> dict:
        return {
            "dataset_id": self.dataset_id,
            "num_episodes": self.num_episodes,
            "fps": self.fps,
            "computed_at": self.computed_at,
            "results": {kind: self.get(kind).to_dict() for kind in ANALYTIC_KINDS},
        }

    def to_json(self, path: str | Path) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2, default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, np.ndarray):
        return value.tolist()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
