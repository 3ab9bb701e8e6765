"""Configuration for cross-episode analytics.

All tunable thresholds are consolidated here so the verdicts can be
adjusted from a single place.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class AnalyticsConfig:
    """Configuration for the analytics engine.

    Groups:
        Input: fps, action_prefix, state_marker
        Autocorrelation: max_acf_lag, decorrelation_threshold
        Velocity: activity thresholds, verdict ratios, histogram bins
        Time binning: num_time_bins (heatmap and multimodality)
        Alignment: min_alignment_frames, max_alignment_lag
        Speed: CV verdict thresholds
        Clustering: resample length, k range, outlier sigma
    """

    # ── Input ──
    fps: float = 30.0
    action_prefix: str = "action"
    state_marker: str = "state"

    # ── Autocorrelation ──
    max_acf_lag: int = 100
    decorrelation_threshold: float = 0.5

    # ── Velocity / smoothness ──
    discrete_max_unique: int = 4
    activity_percentile: float = 0.95
    activity_range_fraction: float = 0.001
    velocity_histogram_bins: int = 30
    smooth_std_ratio: float = 0.4             # std/range below this = smooth
    jerky_std_ratio: float = 0.7              # std/range at or above this = jerky
    smooth_verdict_ratio: float = 0.6
    moderate_verdict_ratio: float = 0.3
    moderate_max_jerky: int = 2
    top_jerky_episodes: int = 10

    # ── Time binning ──
    num_time_bins: int = 50

    # ── Multimodality ──
    bimodality_threshold: float = 5.0 / 9.0
    unimodal_fraction: float = 0.10
    some_multimodal_fraction: float = 0.30

    # ── State-action alignment ──
    min_alignment_frames: int = 10
    max_alignment_lag: int = 30

    # ── Speed variance ──
    min_speed_episodes: int = 3
    consistent_cv: float = 0.2
    moderate_cv: float = 0.4
    max_speed_histogram_bins: int = 30
    low_movement_count: int = 10

    # ── Trajectory clustering ──
    resample_length: int = 50
    min_cluster_episodes: int = 4
    max_clusters: int = 5
    pca_components: int = 3
    outlier_sigma: float = 2.0
    imbalance_flag: float = 0.5
    random_state: int = 42
