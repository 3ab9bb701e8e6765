"""Cross-episode analytic functions.

Every function takes a list of EpisodeTrajectory plus an AnalyticsConfig
and returns its result dataclass, or NotComputed when the sample does
not meet the analytic's preconditions. Functions are pure and share no
state, so the engine may run them concurrently.

References:
    - DeCarlo (1997): bimodality coefficient from skewness and kurtosis
    - Zhao et al. "ACT" (RSS 2023): action chunking and chunk length
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence

import numpy as np
from numpy.typing import NDArray
from scipy import stats
from sklearn.cluster import KMeans
from sklearn.decomposition import PCA
from sklearn.metrics import silhouette_score
from sklearn.preprocessing import StandardScaler

from episcope.analytics.config import AnalyticsConfig
from episcope.analytics.models import (
    AlignmentResult,
    AutocorrelationResult,
    EpisodeTrajectory,
    MultimodalityResult,
    NotComputed,
    SpeedResult,
    TrajectoryClusterResult,
    VarianceHeatmapResult,
    VelocityDimension,
    VelocityResult,
    short_name,
)
from episcope.stats.models import HistogramBin

_GRIPPER = re.compile("grip", re.IGNORECASE)

VELOCITY_TIPS = {
    "Smooth": "Actions are consistent — longer action chunks should work well.",
    "Moderate": "Some dimensions show abrupt changes. Consider moderate chunk sizes.",
    "Jerky": (
        "Many dimensions are jerky. Use shorter action chunks and consider "
        "filtering outlier episodes."
    ),
}

SPEED_TIPS = {
    "Consistent": (
        "Demonstrators execute at similar speeds — no velocity normalization needed."
    ),
    "Moderate variance": (
        "Some speed variation across demonstrators. Consider velocity "
        "normalization for best results."
    ),
    "High variance": (
        "Large speed differences between demonstrations. Velocity normalization "
        "before training is strongly recommended."
    ),
}


def _round_half_up(x: float | NDArray) -> NDArray:
    return np.floor(np.asarray(x) + 0.5).astype(int)


def _action_names(trajectories: Sequence[EpisodeTrajectory]) -> list[str]:
    return list(trajectories[0].action_names) if trajectories else []


def _num_dims(trajectories: Sequence[EpisodeTrajectory]) -> int:
    return min((t.num_dims for t in trajectories), default=0)


def _histogram(values: NDArray, lo: float, width: float, num_bins: int) -> list[HistogramBin]:
    """Equal-width bins starting at ``lo``; overflow lands in the last bin."""
    counts = np.zeros(num_bins, dtype=int)
    if len(values):
        idx = np.floor((values - lo) / width).astype(int)
        np.add.at(counts, np.clip(idx, 0, num_bins - 1), 1)
    return [
        HistogramBin(lo=lo + i * width, hi=lo + (i + 1) * width, count=int(c))
        for i, c in enumerate(counts)
    ]


# ── Analytic 1: Autocorrelation / chunk length ─────────────────


def autocorrelation(values: NDArray, max_lag: int) -> NDArray:
    """Normalized autocorrelation at lags 1..max_lag.

    ``acf[lag - 1] = sum(c[t] * c[t + lag]) / sum(c ** 2)`` with ``c`` the
    mean-centered series. A constant series yields all zeros.
    """
    values = np.asarray(values, dtype=np.float64)
    centered = values - values.mean() if len(values) else values
    variance = float(np.dot(centered, centered))
    if variance == 0:
        return np.zeros(max_lag)

    n = len(centered)
    acf = np.zeros(max_lag)
    for lag in range(1, max_lag + 1):
        if lag < n:
            acf[lag - 1] = float(np.dot(centered[: n - lag], centered[lag:])) / variance
    return acf


def decorrelation_lag(acf: NDArray, threshold: float = 0.5) -> int | None:
    """First 1-based lag where the ACF falls below threshold."""
    below = np.nonzero(np.asarray(acf) < threshold)[0]
    return int(below[0]) + 1 if len(below) else None


def compute_autocorrelation(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> AutocorrelationResult | NotComputed:
    """Average per-dimension ACF over episodes and suggest an action chunk length."""
    kind = "autocorrelation"
    num_dims = _num_dims(trajectories)
    if not trajectories or num_dims == 0:
        return NotComputed(kind, "no action data")

    min_len = min(t.num_frames for t in trajectories)
    max_lag = min(config.max_acf_lag, min_len // 2)
    if max_lag < 2:
        return NotComputed(kind, f"episodes too short ({min_len} frames)")

    acf_sum = np.zeros((num_dims, max_lag))
    ep_count = 0
    for traj in trajectories:
        if traj.num_frames < 2 * max_lag:
            continue
        ep_count += 1
        for d in range(num_dims):
            acf_sum[d] += autocorrelation(traj.actions[:, d], max_lag)

    if ep_count == 0:
        return NotComputed(kind, "no episode long enough")
    avg_acf = acf_sum / ep_count

    names = _action_names(trajectories)[:num_dims]
    short_names = [short_name(n) for n in names]

    rows = []
    for lag in range(1, max_lag + 1):
        row: dict[str, float] = {"lag": lag, "time": lag / config.fps}
        for d, key in enumerate(short_names):
            row[key] = float(avg_acf[d, lag - 1])
        rows.append(row)

    decorrelation = {
        key: decorrelation_lag(avg_acf[d], config.decorrelation_threshold)
        for d, key in enumerate(short_names)
    }
    lags = sorted(lag for lag in decorrelation.values() if lag is not None)
    suggested = lags[len(lags) // 2] if lags else None

    return AutocorrelationResult(
        max_lag=max_lag,
        num_episodes=ep_count,
        short_names=short_names,
        rows=rows,
        decorrelation_lags=decorrelation,
        suggested_chunk=suggested,
    )


# ── Analytic 2: Action velocity / smoothness ───────────────────


def _motor_ranges(trajectories: Sequence[EpisodeTrajectory], num_dims: int) -> tuple[NDArray, NDArray]:
    """Per-dimension (max - min or 1) and unique-value counts over all samples."""
    stacked = np.concatenate([t.actions[:, :num_dims] for t in trajectories], axis=0)
    spans = stacked.max(axis=0) - stacked.min(axis=0)
    ranges = np.where(spans == 0, 1.0, spans)
    unique_counts = np.array([len(np.unique(stacked[:, d])) for d in range(num_dims)])
    return ranges, unique_counts


def _activity_map(
    trajectories: Sequence[EpisodeTrajectory],
    ranges: NDArray,
    num_dims: int,
    config: AnalyticsConfig,
) -> NDArray:
    """(E, D) flags: p95 of |delta| reaches a fraction of the motor range."""
    active = np.zeros((len(trajectories), num_dims), dtype=bool)
    for e, traj in enumerate(trajectories):
        if traj.num_frames < 2:
            continue
        abs_deltas = np.sort(np.abs(np.diff(traj.actions[:, :num_dims], axis=0)), axis=0)
        p95 = abs_deltas[int(len(abs_deltas) * config.activity_percentile)]
        active[e] = p95 >= ranges * config.activity_range_fraction
    return active


def compute_velocity(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> VelocityResult | NotComputed:
    """Frame-to-frame action change statistics and a smoothness verdict."""
    kind = "velocity"
    num_dims = _num_dims(trajectories)
    trajectories = [t for t in trajectories if t.num_frames > 0]
    if not trajectories or num_dims == 0:
        return NotComputed(kind, "no action data")

    ranges, unique_counts = _motor_ranges(trajectories, num_dims)
    active = _activity_map(trajectories, ranges, num_dims, config)
    globally_active = active.any(axis=0)
    names = _action_names(trajectories)[:num_dims]
    deltas_per_episode = [np.diff(t.actions[:, :num_dims], axis=0) for t in trajectories]

    dimensions = []
    for d in range(num_dims):
        all_deltas = np.concatenate([dl[:, d] for dl in deltas_per_episode])
        active_deltas = np.concatenate(
            [dl[:, d] for e, dl in enumerate(deltas_per_episode) if active[e, d]] or [np.empty(0)]
        )
        deltas = active_deltas if len(active_deltas) else all_deltas
        discrete = bool(unique_counts[d] <= config.discrete_max_unique)
        motor_range = float(ranges[d])

        if len(deltas) == 0:
            dimensions.append(
                VelocityDimension(
                    name=short_name(names[d]),
                    motor_range=motor_range,
                    std=0.0,
                    max_abs=0.0,
                    lo=0.0,
                    hi=0.0,
                    active=bool(globally_active[d]),
                    discrete=discrete,
                )
            )
            continue

        normalized = deltas / motor_range
        lo, hi = float(normalized.min()), float(normalized.max())
        width = ((hi - lo) or 1.0) / config.velocity_histogram_bins
        dimensions.append(
            VelocityDimension(
                name=short_name(names[d]),
                motor_range=motor_range,
                std=float(np.std(deltas) / motor_range),
                max_abs=float(np.max(np.abs(deltas)) / motor_range),
                lo=lo,
                hi=hi,
                active=bool(globally_active[d]),
                discrete=discrete,
                histogram=_histogram(normalized, lo, width, config.velocity_histogram_bins),
            )
        )

    verdict, tip, smooth_ratio, jerky = _velocity_verdict(dimensions, config)

    jerk_scores = []
    for e, traj in enumerate(trajectories):
        mask = active[e]
        dl = deltas_per_episode[e]
        if len(dl) == 0 or not mask.any():
            jerk_scores.append((traj.episode_index, 0.0))
            continue
        scores = np.abs(dl[:, mask]) / ranges[mask]
        jerk_scores.append((traj.episode_index, float(scores.mean())))
    jerk_scores.sort(key=lambda item: item[1], reverse=True)

    return VelocityResult(
        num_episodes=len(trajectories),
        dimensions=dimensions,
        verdict=verdict,
        tip=tip,
        smooth_ratio=smooth_ratio,
        jerky_dimensions=jerky,
        jerkiest_episodes=jerk_scores[: config.top_jerky_episodes],
    )


def _velocity_verdict(
    dimensions: list[VelocityDimension], config: AnalyticsConfig
) -> tuple[str | None, str | None, float, list[str]]:
    """Classify dimensions by std relative to the largest one.

    Only active, non-discrete dimensions vote. Gripper dimensions may be
    jerky without affecting the verdict.
    """
    voting = [dim for dim in dimensions if dim.active and not dim.discrete]
    if not voting:
        return None, None, 0.0, []

    max_std = max(dim.std for dim in voting) or 1.0
    ratios = [(dim, dim.std / max_std) for dim in voting]
    smooth = [dim for dim, r in ratios if r < config.smooth_std_ratio]
    jerky = [dim for dim, r in ratios if r >= config.jerky_std_ratio]
    jerky_non_gripper = [dim for dim in jerky if not _GRIPPER.search(dim.name)]
    smooth_ratio = len(smooth) / len(voting)

    if smooth_ratio >= config.smooth_verdict_ratio and not jerky_non_gripper:
        verdict = "Smooth"
    elif (
        len(jerky_non_gripper) <= config.moderate_max_jerky
        and smooth_ratio >= config.moderate_verdict_ratio
    ):
        verdict = "Moderate"
    else:
        verdict = "Jerky"

    return verdict, VELOCITY_TIPS[verdict], smooth_ratio, [dim.name for dim in jerky_non_gripper]


# ── Analytics 3 & 4: time-binned heatmaps ──────────────────────


def time_bins(num_bins: int) -> list[float]:
    if num_bins <= 1:
        return [0.0]
    return [i / (num_bins - 1) for i in range(num_bins)]


def binned_samples(
    trajectories: Sequence[EpisodeTrajectory], num_bins: int, num_dims: int
) -> NDArray:
    """(bins, episodes, dims) action values at each normalized time bin."""
    positions = np.asarray(time_bins(num_bins))
    samples = np.zeros((num_bins, len(trajectories), num_dims))
    for e, traj in enumerate(trajectories):
        T = traj.num_frames
        src = np.minimum(_round_half_up(positions * (T - 1)), T - 1)
        samples[:, e, :] = traj.actions[src, :num_dims]
    return samples


def compute_variance_heatmap(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> VarianceHeatmapResult | NotComputed:
    """Population variance across episodes per (time bin, dimension)."""
    kind = "variance_heatmap"
    num_dims = _num_dims(trajectories)
    trajectories = [t for t in trajectories if t.num_frames > 0]
    if not trajectories or num_dims == 0:
        return NotComputed(kind, "no action data")

    samples = binned_samples(trajectories, config.num_time_bins, num_dims)
    n = samples.shape[1]
    if n < 2:
        variances = np.zeros((config.num_time_bins, num_dims))
    else:
        mean = samples.mean(axis=1)
        variances = (samples**2).mean(axis=1) - mean**2

    return VarianceHeatmapResult(
        num_episodes=n,
        time_bins=time_bins(config.num_time_bins),
        action_names=_action_names(trajectories)[:num_dims],
        variances=variances.tolist(),
    )


def bimodality_coefficient(values: NDArray) -> float:
    """Sarle's bimodality coefficient with bias-corrected moments.

    Returns 0 for fewer than 4 values or zero variance.
    """
    values = np.asarray(values, dtype=np.float64)
    n = len(values)
    if n < 4 or np.var(values) == 0:
        return 0.0

    skew = float(stats.skew(values, bias=False))
    kurt = float(stats.kurtosis(values, fisher=True, bias=False))
    denominator = kurt + 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    if denominator == 0 or not math.isfinite(skew) or not math.isfinite(kurt):
        return 0.0
    return (skew**2 + 1) / denominator


def compute_multimodality(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> MultimodalityResult | NotComputed:
    """Bimodality coefficients per (time bin, dimension) and an overall verdict."""
    kind = "multimodality"
    num_dims = _num_dims(trajectories)
    trajectories = [t for t in trajectories if t.num_frames > 0]
    if not trajectories or num_dims == 0:
        return NotComputed(kind, "no action data")

    samples = binned_samples(trajectories, config.num_time_bins, num_dims)
    coefficients = np.zeros((config.num_time_bins, num_dims))
    for b in range(config.num_time_bins):
        for d in range(num_dims):
            coefficients[b, d] = bimodality_coefficient(samples[b, :, d])

    bimodal_fraction = float(np.mean(coefficients > config.bimodality_threshold))
    if bimodal_fraction < config.unimodal_fraction:
        verdict = "Mostly Unimodal"
    elif bimodal_fraction < config.some_multimodal_fraction:
        verdict = "Some Multimodality"
    else:
        verdict = "Significantly Multimodal"

    return MultimodalityResult(
        num_episodes=len(trajectories),
        time_bins=time_bins(config.num_time_bins),
        action_names=_action_names(trajectories)[:num_dims],
        coefficients=coefficients.tolist(),
        bimodal_fraction=bimodal_fraction,
        verdict=verdict,
    )


# ── Analytic 5: State-action temporal alignment ────────────────


def match_pairs(action_names: Sequence[str], state_names: Sequence[str]) -> list[tuple[int, int]]:
    """Pair action and state dimensions by identical element name, else by position."""
    state_short = [short_name(n) for n in state_names]
    pairs = []
    for ai, name in enumerate(action_names):
        suffix = short_name(name)
        if suffix in state_short:
            pairs.append((ai, state_short.index(suffix)))
    if not pairs:
        pairs = [(i, i) for i in range(min(len(action_names), len(state_names)))]
    return pairs


def lagged_correlation(actions: NDArray, state_deltas: NDArray, max_lag: int) -> NDArray:
    """Pearson correlation of ``actions[t]`` with ``state_deltas[t + lag]``.

    Both series are centered on their own full-length means; the sums run
    over the overlapping samples only. Lags span ``-max_lag..max_lag``; a
    zero denominator gives 0.
    """
    a = actions - actions.mean()
    s = state_deltas - state_deltas.mean()
    n = len(a)
    curve = np.zeros(2 * max_lag + 1)
    for i, lag in enumerate(range(-max_lag, max_lag + 1)):
        start, stop = max(0, -lag), min(n, n - lag)
        if stop <= start:
            continue
        a_part = a[start:stop]
        s_part = s[start + lag : stop + lag]
        denominator = math.sqrt(float(np.dot(a_part, a_part)) * float(np.dot(s_part, s_part)))
        if denominator > 0:
            curve[i] = float(np.dot(a_part, s_part)) / denominator
    return curve


def _peak(lags: Sequence[int], curve: Sequence[float]) -> tuple[int, float]:
    idx = int(np.argmax(curve))
    return int(lags[idx]), float(curve[idx])


def compute_alignment(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> AlignmentResult | NotComputed:
    """Cross-correlate actions with state changes to estimate control delay."""
    kind = "alignment"
    usable = [
        t
        for t in trajectories
        if t.states is not None and t.num_frames >= config.min_alignment_frames
    ]
    if not usable:
        return NotComputed(kind, "no episode with states and enough frames")

    reference = usable[0]
    pairs = match_pairs(reference.action_names, reference.state_names)
    pairs = [
        (ai, si)
        for ai, si in pairs
        if all(ai < t.num_dims and si < t.states.shape[1] for t in usable)
    ]
    if not pairs:
        return NotComputed(kind, "no matching action/state dimensions")

    n_min = min(t.num_frames for t in usable)
    max_lag = min(n_min // 4, config.max_alignment_lag)
    if max_lag < 2:
        return NotComputed(kind, f"episodes too short ({n_min} frames)")

    curves = np.zeros((len(pairs), 2 * max_lag + 1))
    for traj in usable:
        n = traj.num_frames - 1
        for p, (ai, si) in enumerate(pairs):
            state_deltas = np.diff(traj.states[:, si])
            curves[p] += lagged_correlation(traj.actions[:n, ai], state_deltas, max_lag)
    curves /= len(usable)

    lags = list(range(-max_lag, max_lag + 1))
    max_curve = curves.max(axis=0)
    mean_curve = curves.mean(axis=0)
    min_curve = curves.min(axis=0)
    peak_lag_max, peak_corr_max = _peak(lags, max_curve)
    peak_lag_mean, peak_corr_mean = _peak(lags, mean_curve)
    peak_lag_min, peak_corr_min = _peak(lags, min_curve)
    pair_peaks = [_peak(lags, curve)[0] for curve in curves]

    return AlignmentResult(
        num_episodes=len(usable),
        num_pairs=len(pairs),
        pairs=[(reference.action_names[ai], reference.state_names[si]) for ai, si in pairs],
        lags=lags,
        max_curve=max_curve.tolist(),
        mean_curve=mean_curve.tolist(),
        min_curve=min_curve.tolist(),
        peak_lag_max=peak_lag_max,
        peak_lag_mean=peak_lag_mean,
        peak_lag_min=peak_lag_min,
        peak_corr_max=peak_corr_max,
        peak_corr_mean=peak_corr_mean,
        peak_corr_min=peak_corr_min,
        lag_range_min=min(pair_peaks),
        lag_range_max=max(pair_peaks),
        fps=config.fps,
    )


# ── Analytic 6: Demonstrator speed variance ────────────────────


def episode_speed(actions: NDArray) -> float:
    """Mean L2 norm of frame-to-frame action deltas, rounded to 4 decimals."""
    if len(actions) < 2:
        return 0.0
    norms = np.linalg.norm(np.diff(actions, axis=0), axis=1)
    return round(float(norms.mean()), 4)


def compute_speed(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> SpeedResult | NotComputed:
    """Spread of per-episode execution speed across demonstrators."""
    kind = "speed"
    if len(trajectories) < config.min_speed_episodes:
        return NotComputed(
            kind, f"needs at least {config.min_speed_episodes} episodes, got {len(trajectories)}"
        )

    speeds = [(t.episode_index, episode_speed(t.actions)) for t in trajectories]
    values = np.sort(np.array([s for _, s in speeds]))
    n = len(values)

    mean = float(values.mean())
    std = float(values.std())
    cv = std / mean if mean > 0 else 0.0
    median = float(values[n // 2])

    num_bins = min(config.max_speed_histogram_bins, math.ceil(math.sqrt(n)))
    lo, hi = float(values[0]), float(values[-1])
    width = ((hi - lo) or 1.0) / num_bins

    if cv < config.consistent_cv:
        verdict = "Consistent"
    elif cv < config.moderate_cv:
        verdict = "Moderate variance"
    else:
        verdict = "High variance"

    slowest = sorted(speeds, key=lambda item: item[1])

    return SpeedResult(
        num_episodes=n,
        speeds=speeds,
        mean=mean,
        std=std,
        cv=cv,
        median=median,
        histogram=_histogram(values, lo, width, num_bins),
        verdict=verdict,
        tip=SPEED_TIPS[verdict],
        low_movement_episodes=slowest[: config.low_movement_count],
    )


# ── Analytic 7: Trajectory clustering & outliers ───────────────


def resample_trajectory(actions: NDArray, length: int) -> NDArray:
    """Linearly resample a (T, D) trajectory to (length, D) over normalized time."""
    T, D = actions.shape
    if T == 0:
        return np.zeros((length, D))
    if T == 1:
        return np.repeat(actions, length, axis=0)
    source = np.linspace(0.0, 1.0, T)
    target = np.linspace(0.0, 1.0, length)
    return np.column_stack([np.interp(target, source, actions[:, d]) for d in range(D)])


def compute_trajectory_clusters(
    trajectories: Sequence[EpisodeTrajectory], config: AnalyticsConfig
) -> TrajectoryClusterResult | NotComputed:
    """Cluster time-normalized trajectories and flag those far from their centroid."""
    kind = "trajectory_clusters"
    num_dims = _num_dims(trajectories)
    trajectories = [t for t in trajectories if t.num_frames > 0]
    n = len(trajectories)
    if n < config.min_cluster_episodes or num_dims == 0:
        return NotComputed(
            kind, f"needs at least {config.min_cluster_episodes} episodes, got {n}"
        )

    features = np.stack(
        [
            resample_trajectory(t.actions[:, :num_dims], config.resample_length).ravel()
            for t in trajectories
        ]
    )
    scaled = StandardScaler().fit_transform(features)
    if np.allclose(scaled, 0):
        return NotComputed(kind, "all trajectories are identical")

    n_components = min(config.pca_components, n, scaled.shape[1])
    pca = PCA(n_components=n_components, random_state=config.random_state)
    points = pca.fit_transform(scaled)

    best: tuple[float, KMeans] | None = None
    for k in range(2, min(config.max_clusters, n - 1) + 1):
        model = KMeans(n_clusters=k, n_init=10, random_state=config.random_state).fit(points)
        if len(set(model.labels_)) < 2:
            continue
        score = float(silhouette_score(points, model.labels_))
        if best is None or score > best[0]:
            best = (score, model)

    if best is None:
        return NotComputed(kind, "could not form at least two clusters")

    score, model = best
    labels = model.labels_
    k = model.n_clusters
    distances = np.linalg.norm(points - model.cluster_centers_[labels], axis=1)

    outliers: list[int] = []
    for c in range(k):
        members = labels == c
        if not members.any():
            continue
        threshold = distances[members].mean() + config.outlier_sigma * distances[members].std()
        outliers.extend(
            trajectories[i].episode_index
            for i in np.nonzero(members)[0]
            if distances[i] > threshold
        )

    sizes = [int(np.sum(labels == c)) for c in range(k)]
    largest = max(sizes)
    imbalance = (largest - min(sizes)) / largest if largest else 0.0

    return TrajectoryClusterResult(
        num_episodes=n,
        num_clusters=k,
        silhouette=score,
        labels={t.episode_index: int(labels[i]) for i, t in enumerate(trajectories)},
        cluster_sizes=sizes,
        imbalance=imbalance,
        imbalanced=imbalance > config.imbalance_flag,
        outliers=sorted(outliers),
        outlier_scores={t.episode_index: float(distances[i]) for i, t in enumerate(trajectories)},
        explained_variance=pca.explained_variance_ratio_.tolist(),
        projections={t.episode_index: points[i].tolist() for i, t in enumerate(trajectories)},
    )
