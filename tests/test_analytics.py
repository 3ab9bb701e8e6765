"""Tests for cross-episode analytics."""

import json

import numpy as np
import pytest

import episcope
from episcope.analytics import analyzer as analyzer_module
from episcope.analytics.analyzer import SINGLE_EPISODE_KINDS, CrossEpisodeAnalyzer
from episcope.analytics.config import AnalyticsConfig
from episcope.analytics.metrics import (
    autocorrelation,
    bimodality_coefficient,
    compute_alignment,
    compute_autocorrelation,
    compute_multimodality,
    compute_speed,
    compute_trajectory_clusters,
    compute_variance_heatmap,
    compute_velocity,
    decorrelation_lag,
    episode_speed,
    lagged_correlation,
    match_pairs,
    resample_trajectory,
    time_bins,
)
from episcope.analytics.models import (
    ANALYTIC_KINDS,
    AnalyticsReport,
    EpisodeTrajectory,
    NotComputed,
    short_name,
)
from episcope.analytics.sampling import stride_select
from episcope.config.models import EpiscopeConfig
from episcope.core.models import EpisodeRecord
from episcope.resolve import EpisodeResolver


@pytest.fixture
def config():
    return AnalyticsConfig(fps=10.0)


def _ramps(make_trajectory, slopes, frames=20):
    t = np.arange(frames, dtype=np.float64)
    return [make_trajectory(ep, slope * t) for ep, slope in enumerate(slopes)]


def _delayed_state(actions: np.ndarray, delay: int) -> np.ndarray:
    """State whose frame-to-frame change follows the action ``delay`` frames later."""
    n = len(actions)
    shifted = np.concatenate([np.zeros(delay), actions[: n - 1 - delay]])
    return np.concatenate([[0.0], np.cumsum(shifted)])


# ── Models ───────────────────────────────────────────────────────


class TestEpisodeTrajectory:
    """Test trajectory construction."""

    def test_vector_actions_become_column(self):
        trajectory = EpisodeTrajectory(episode_index=0, actions=np.arange(5.0))
        assert trajectory.actions.shape == (5, 1)
        assert trajectory.action_names == ["0"]

    def test_mismatched_states_are_dropped(self):
        trajectory = EpisodeTrajectory(
            episode_index=0,
            actions=np.zeros((5, 2)),
            states=np.zeros((4, 2)),
            action_names=["a", "b"],
            state_names=["sa", "sb"],
        )
        assert trajectory.states is None

    def test_from_record(self):
        record = EpisodeRecord(
            episode_index=3,
            rows=[
                {"timestamp": 0.0, "action | x": 1.0, "observation.state | x": 0.5, "reward": 1.0},
                {"timestamp": 0.1, "action | x": 2.0, "observation.state | x": 1.5, "reward": 0.0},
            ],
            series_names=["timestamp", "action | x", "observation.state | x", "reward"],
        )
        trajectory = EpisodeTrajectory.from_record(record)

        assert trajectory.episode_index == 3
        assert trajectory.action_names == ["action | x"]
        assert trajectory.state_names == ["observation.state | x"]
        np.testing.assert_array_equal(trajectory.actions[:, 0], [1.0, 2.0])
        np.testing.assert_array_equal(trajectory.states[:, 0], [0.5, 1.5])

    def test_short_name(self):
        assert short_name("action | shoulder") == "shoulder"
        assert short_name("reward") == "reward"


class TestAnalyticsReport:
    """Test report access and serialization."""

    def test_missing_kind_is_not_run(self):
        report = AnalyticsReport(dataset_id="ds")
        assert report.get("speed") == NotComputed("speed", "not run")
        assert report.computed("speed") is None
        assert report.computed_at

    def test_unknown_kind(self):
        with pytest.raises(KeyError):
            AnalyticsReport(dataset_id="ds").get("bogus")

    def test_to_dict_has_every_kind(self):
        d = AnalyticsReport(dataset_id="ds").to_dict()
        assert list(d["results"]) == list(ANALYTIC_KINDS)
        assert d["results"]["velocity"]["computed"] is False


# ── Autocorrelation ──────────────────────────────────────────────


class TestAutocorrelation:
    """Test action autocorrelation and chunk-length suggestion."""

    def test_constant_series(self):
        np.testing.assert_array_equal(autocorrelation(np.ones(20), 5), np.zeros(5))

    def test_alternating_series(self):
        acf = autocorrelation(np.array([1.0, -1.0] * 10), 2)
        assert acf[0] == pytest.approx(-0.95)
        assert acf[1] == pytest.approx(0.9)

    def test_decorrelation_lag(self):
        assert decorrelation_lag(np.array([0.9, 0.6, 0.4])) == 3
        assert decorrelation_lag(np.array([0.9, 0.8])) is None
        assert decorrelation_lag(np.array([0.9, 0.6]), threshold=0.7) == 2

    def test_random_walks(self, random_walk_trajectories, config):
        result = compute_autocorrelation(random_walk_trajectories, config)

        assert result.max_lag == 60
        assert result.num_episodes == 12
        assert result.short_names == ["j0", "j1"]
        assert len(result.rows) == 60
        assert result.rows[0]["lag"] == 1
        assert result.rows[0]["time"] == pytest.approx(0.1)
        assert result.rows[0]["j0"] > 0.5

    def test_suggested_chunk_is_median(self, make_trajectory, config):
        rng = np.random.RandomState(42)
        noise = make_trajectory(0, rng.normal(size=(200, 3)))
        result = compute_autocorrelation([noise], config)
        assert set(result.decorrelation_lags.values()) == {1}
        assert result.suggested_chunk == 1

    def test_short_episodes(self, make_trajectory, config):
        result = compute_autocorrelation([make_trajectory(0, np.arange(3.0))], config)
        assert isinstance(result, NotComputed)

    def test_empty(self, config):
        assert isinstance(compute_autocorrelation([], config), NotComputed)


# ── Velocity ─────────────────────────────────────────────────────


class TestVelocity:
    """Test action smoothness verdicts."""

    def test_linear_ramps_are_smooth(self, make_trajectory, config):
        t = np.arange(50, dtype=np.float64)
        trajectories = [make_trajectory(ep, np.column_stack([t, 2 * t])) for ep in range(4)]
        result = compute_velocity(trajectories, config)

        assert result.verdict == "Smooth"
        assert result.tip.startswith("Actions are consistent")
        assert result.smooth_ratio == 1.0
        assert result.jerky_dimensions == []
        assert all(dim.active and not dim.discrete for dim in result.dimensions)
        assert len(result.dimensions[0].histogram) == config.velocity_histogram_bins

    def test_noise_is_jerky(self, make_trajectory, config):
        rng = np.random.RandomState(42)
        trajectories = [make_trajectory(ep, rng.uniform(-1, 1, size=(50, 3))) for ep in range(4)]
        result = compute_velocity(trajectories, config)

        assert result.verdict == "Jerky"
        assert result.jerky_dimensions == ["j0", "j1", "j2"]

    def test_noisy_gripper_does_not_make_jerky(self, make_trajectory, config):
        rng = np.random.RandomState(42)
        t = np.arange(50, dtype=np.float64)
        names = ["action | j0", "action | j1", "action | gripper"]
        trajectories = [
            make_trajectory(ep, np.column_stack([t, 3 * t, rng.normal(size=50)]), names=names)
            for ep in range(4)
        ]
        result = compute_velocity(trajectories, config)

        assert result.verdict == "Smooth"
        assert result.jerky_dimensions == []

    def test_constant_actions_have_no_verdict(self, make_trajectory, config):
        trajectories = [make_trajectory(ep, np.zeros((20, 2))) for ep in range(3)]
        result = compute_velocity(trajectories, config)

        assert result.verdict is None
        assert result.tip is None
        assert all(dim.discrete and not dim.active for dim in result.dimensions)

    def test_jerkiest_episode_first(self, make_trajectory, config):
        rng = np.random.RandomState(42)
        t = np.arange(50, dtype=np.float64) * 0.1
        trajectories = [make_trajectory(ep, t) for ep in range(2)]
        trajectories.append(make_trajectory(2, t + rng.normal(0, 0.5, size=50)))
        result = compute_velocity(trajectories, config)

        assert result.jerkiest_episodes[0][0] == 2
        assert len(result.jerkiest_episodes) == 3

    def test_no_data(self, config):
        assert isinstance(compute_velocity([], config), NotComputed)


# ── Time-binned heatmaps ─────────────────────────────────────────


class TestVarianceHeatmap:
    """Test per time-bin variance across episodes."""

    def test_time_bins(self):
        assert time_bins(5) == [0.0, 0.25, 0.5, 0.75, 1.0]
        assert time_bins(1) == [0.0]

    def test_constant_episodes(self, make_trajectory, config):
        trajectories = [
            make_trajectory(0, np.zeros(10)),
            make_trajectory(1, np.full(10, 2.0)),
        ]
        result = compute_variance_heatmap(trajectories, config)

        assert result.num_episodes == 2
        assert len(result.time_bins) == config.num_time_bins
        assert np.allclose(result.variances, 1.0)

    def test_single_episode_has_zero_variance(self, make_trajectory, config):
        result = compute_variance_heatmap([make_trajectory(0, np.arange(10.0))], config)
        assert np.allclose(result.variances, 0.0)


class TestMultimodality:
    """Test bimodality coefficients."""

    def test_bimodal_mixture(self):
        rng = np.random.RandomState(42)
        values = np.concatenate([rng.normal(-5, 0.5, 500), rng.normal(5, 0.5, 500)])
        assert bimodality_coefficient(values) > 5 / 9

    def test_gaussian(self):
        rng = np.random.RandomState(42)
        assert bimodality_coefficient(rng.normal(size=1000)) < 5 / 9

    def test_degenerate_inputs(self):
        assert bimodality_coefficient(np.array([1.0, 2.0, 3.0])) == 0.0
        assert bimodality_coefficient(np.ones(10)) == 0.0

    def test_identical_trajectories_are_unimodal(self, make_trajectory, config):
        trajectories = [make_trajectory(ep, np.arange(20.0)) for ep in range(6)]
        result = compute_multimodality(trajectories, config)
        assert result.verdict == "Mostly Unimodal"
        assert result.bimodal_fraction == 0.0

    def test_split_trajectories_are_multimodal(self, make_trajectory, config):
        base = np.arange(20.0)
        trajectories = [
            make_trajectory(ep, base + (5.0 if ep % 2 else -5.0)) for ep in range(12)
        ]
        result = compute_multimodality(trajectories, config)
        assert result.verdict == "Significantly Multimodal"
        assert result.bimodal_fraction == 1.0


# ── Alignment ────────────────────────────────────────────────────


class TestAlignment:
    """Test state-action lag estimation."""

    def test_match_pairs_by_name(self):
        pairs = match_pairs(
            ["action | x", "action | y"], ["observation.state | y", "observation.state | x"]
        )
        assert pairs == [(0, 1), (1, 0)]

    def test_match_pairs_by_position(self):
        assert match_pairs(["action | 0", "action | 1"], ["state | a"]) == [(0, 0)]

    def test_lagged_correlation_peak(self):
        rng = np.random.RandomState(0)
        a = rng.normal(size=200)
        s = np.concatenate([np.zeros(2), a[:-2]])
        curve = lagged_correlation(a, s, max_lag=5)
        assert int(np.argmax(curve)) - 5 == 2

    def test_recovers_control_delay(self, make_trajectory, config):
        rng = np.random.RandomState(0)
        trajectories = []
        for ep in range(4):
            actions = rng.normal(size=100)
            states = _delayed_state(actions, 3)
            trajectories.append(make_trajectory(ep, actions, states=states[:, None]))

        result = compute_alignment(trajectories, config)

        assert result.peak_lag_mean == 3
        assert result.control_delay == 3
        assert result.control_delay_seconds == pytest.approx(0.3)
        assert result.peak_corr_mean > 0.9
        assert result.pairs == [("action | j0", "observation.state | j0")]
        assert result.lags[0] == -25

    def test_requires_states(self, random_walk_trajectories, config):
        result = compute_alignment(random_walk_trajectories, config)
        assert isinstance(result, NotComputed)

    def test_requires_enough_frames(self, make_trajectory, config):
        short = make_trajectory(0, np.arange(5.0), states=np.arange(5.0)[:, None])
        assert isinstance(compute_alignment([short], config), NotComputed)


# ── Speed ────────────────────────────────────────────────────────


class TestSpeed:
    """Test demonstrator speed spread."""

    def test_episode_speed(self):
        actions = np.array([[0.0, 0.0], [3.0, 4.0], [6.0, 8.0]])
        assert episode_speed(actions) == 5.0
        assert episode_speed(actions[:1]) == 0.0

    def test_consistent(self, make_trajectory, config):
        result = compute_speed(_ramps(make_trajectory, [1, 1, 1, 1]), config)
        assert result.verdict == "Consistent"
        assert result.cv == 0.0
        assert result.tip.startswith("Demonstrators execute at similar speeds")

    def test_high_variance(self, make_trajectory, config):
        result = compute_speed(_ramps(make_trajectory, [1, 2, 3, 4, 5]), config)

        assert result.verdict == "High variance"
        assert result.mean == pytest.approx(3.0)
        assert result.cv == pytest.approx(np.sqrt(2) / 3)
        assert result.median == pytest.approx(3.0)
        assert result.low_movement_episodes[0] == (0, 1.0)
        assert len(result.histogram) == 3
        assert sum(b.count for b in result.histogram) == 5

    def test_moderate_variance(self, make_trajectory, config):
        result = compute_speed(_ramps(make_trajectory, [1.0, 1.5, 2.0]), config)
        assert result.verdict == "Moderate variance"

    def test_too_few_episodes(self, make_trajectory, config):
        result = compute_speed(_ramps(make_trajectory, [1, 2]), config)
        assert isinstance(result, NotComputed)


# ── Clustering ───────────────────────────────────────────────────


class TestTrajectoryClusters:
    """Test trajectory clustering and outlier detection."""

    def test_resample_trajectory(self):
        resampled = resample_trajectory(np.array([[0.0], [10.0]]), 5)
        np.testing.assert_allclose(resampled[:, 0], [0.0, 2.5, 5.0, 7.5, 10.0])
        assert resample_trajectory(np.array([[1.0, 2.0]]), 3).shape == (3, 2)

    def test_two_groups(self, make_trajectory, config):
        t = np.arange(30, dtype=np.float64)
        trajectories = [make_trajectory(ep, (1 + 0.01 * ep) * t) for ep in range(6)]
        trajectories += [make_trajectory(6 + ep, -(1 + 0.01 * ep) * t) for ep in range(6)]

        result = compute_trajectory_clusters(trajectories, config)

        assert result.num_clusters == 2
        assert sorted(result.cluster_sizes) == [6, 6]
        assert len({result.labels[ep] for ep in range(6)}) == 1
        assert result.labels[0] != result.labels[6]
        assert result.imbalance == 0.0
        assert not result.imbalanced
        assert set(result.outlier_scores) == set(range(12))

    def test_planted_outlier(self, make_trajectory, config):
        t = np.arange(30, dtype=np.float64)
        rising = [make_trajectory(ep, (1 + 0.01 * ep) * t) for ep in range(10)]
        falling = [make_trajectory(10 + ep, -(1 + 0.01 * ep) * t) for ep in range(10)]
        # Same direction as the rising group but far steeper than any member
        stray = make_trajectory(99, 1.4 * t)

        result = compute_trajectory_clusters(rising + falling + [stray], config)

        assert result.num_clusters == 2
        assert sorted(result.cluster_sizes) == [10, 11]
        assert result.labels[99] == result.labels[0]
        assert result.outliers == [99]
        assert max(result.outlier_scores, key=result.outlier_scores.get) == 99

    def test_deterministic(self, random_walk_trajectories, config):
        first = compute_trajectory_clusters(random_walk_trajectories, config)
        second = compute_trajectory_clusters(random_walk_trajectories, config)
        assert first.labels == second.labels
        assert first.num_clusters == second.num_clusters
        assert first.outliers == second.outliers

    def test_identical_trajectories(self, make_trajectory, config):
        trajectories = [make_trajectory(ep, np.arange(10.0)) for ep in range(5)]
        assert isinstance(compute_trajectory_clusters(trajectories, config), NotComputed)

    def test_too_few_episodes(self, random_walk_trajectories, config):
        result = compute_trajectory_clusters(random_walk_trajectories[:3], config)
        assert isinstance(result, NotComputed)


# ── Engine ───────────────────────────────────────────────────────


class TestCrossEpisodeAnalyzer:
    """Test the analytics engine."""

    def test_runs_every_kind(self, random_walk_trajectories):
        report = CrossEpisodeAnalyzer(fps=10.0).analyze(random_walk_trajectories, "ds")

        assert set(report.results) == set(ANALYTIC_KINDS)
        assert report.num_episodes == 12
        assert report.computed("autocorrelation") is not None
        assert report.computed("speed") is not None
        assert isinstance(report.get("alignment"), NotComputed)

    def test_failing_analytic_is_isolated(self, random_walk_trajectories, monkeypatch):
        def boom(trajectories, config):
            raise RuntimeError("boom")

        monkeypatch.setitem(analyzer_module.ANALYTICS, "speed", boom)
        report = CrossEpisodeAnalyzer().analyze(random_walk_trajectories)

        assert report.get("speed") == NotComputed("speed", "failed: boom")
        assert report.computed("velocity") is not None

    def test_fps_override(self, random_walk_trajectories):
        analyzer = CrossEpisodeAnalyzer(fps=10.0)
        report = analyzer.analyze(random_walk_trajectories, fps=20.0, kinds=["autocorrelation"])

        assert report.fps == 20.0
        assert report.computed("autocorrelation").rows[0]["time"] == pytest.approx(0.05)
        assert analyzer.config.fps == 10.0

    def test_config_object(self):
        config = AnalyticsConfig(max_acf_lag=10)
        assert CrossEpisodeAnalyzer(config).config is config

    def test_to_json(self, random_walk_trajectories, tmp_path):
        report = CrossEpisodeAnalyzer().analyze(random_walk_trajectories, "ds")
        path = tmp_path / "report.json"
        report.to_json(path)

        with open(path) as f:
            data = json.load(f)
        assert data["dataset_id"] == "ds"
        assert data["results"]["speed"]["computed"] is True
        assert data["results"]["alignment"]["computed"] is False

    def test_analyze_record(self, v2_dataset):
        _, record = EpisodeResolver().resolve_episode(v2_dataset, 1)
        report = CrossEpisodeAnalyzer(fps=10.0).analyze_record(record, dataset_id="ds")

        assert set(report.results) == set(SINGLE_EPISODE_KINDS)
        assert report.get("speed").reason == "not run"
        assert report.computed("autocorrelation") is not None

    def test_module_level_analyze(self, v3_dataset):
        report = episcope.analyze(str(v3_dataset), config=EpiscopeConfig())

        assert report.num_episodes == 4
        assert report.fps == 10.0
        assert report.computed("speed") is not None


class TestSampling:
    """Test strided episode selection."""

    def test_stride_select(self):
        assert stride_select(list(range(10)), 4) == [0, 3, 6, 9]
        assert stride_select(list(range(3)), 10) == [0, 1, 2]
        assert stride_select(list(range(10)), 1) == [0]

    def test_hard_cap(self):
        assert len(stride_select(list(range(1000)), 600)) == 500
