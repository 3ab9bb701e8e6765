"""Cross-episode analytics engine: runs every analytic over a sample."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from episcope.analytics.config import AnalyticsConfig
from episcope.analytics.metrics import (
    compute_alignment,
    compute_autocorrelation,
    compute_multimodality,
    compute_speed,
    compute_trajectory_clusters,
    compute_variance_heatmap,
    compute_velocity,
)
from episcope.analytics.models import (
    ANALYTIC_KINDS,
    AnalyticsReport,
    AnalyticsResult,
    EpisodeTrajectory,
    NotComputed,
)
from episcope.core.models import EpisodeRecord

logger = logging.getLogger(__name__)

Analytic = Callable[[Sequence[EpisodeTrajectory], AnalyticsConfig], AnalyticsResult]

ANALYTICS: dict[str, Analytic] = {
    "autocorrelation": compute_autocorrelation,
    "velocity": compute_velocity,
    "variance_heatmap": compute_variance_heatmap,
    "multimodality": compute_multimodality,
    "alignment": compute_alignment,
    "speed": compute_speed,
    "trajectory_clusters": compute_trajectory_clusters,
}

# Analytics that are meaningful on a single episode
SINGLE_EPISODE_KINDS = ("autocorrelation", "velocity", "alignment")


class CrossEpisodeAnalyzer:
    """Runs the cross-episode analytics over a set of trajectories.

    Each analytic runs independently; one that raises is logged and
    reported as NotComputed without affecting the others.

    Usage::

        analyzer = CrossEpisodeAnalyzer(fps=30.0)
        report = analyzer.analyze(resolver.sample("lerobot/pusht"))
        print(report.computed("speed").verdict)
    """

    def __init__(
        self, config: AnalyticsConfig | None = None, max_workers: int = 4, **kwargs
    ) -> None:
        if config is not None:
            self.config = config
        else:
            self.config = AnalyticsConfig(**kwargs)
        self.max_workers = max_workers

    def analyze(
        self,
        trajectories: Sequence[EpisodeTrajectory],
        dataset_id: str = "",
        fps: float | None = None,
        kinds: Sequence[str] = ANALYTIC_KINDS,
    ) -> AnalyticsReport:
        """Run the requested analytics.

        Args:
            trajectories: Sampled episodes.
            dataset_id: Identifier recorded on the report.
            fps: Frame rate override; defaults to the config's fps.
            kinds: Subset of ANALYTIC_KINDS to run.

        Returns:
            AnalyticsReport with one result per requested kind.
        """
        config = self.config
        if fps is not None and fps > 0 and fps != config.fps:
            config = AnalyticsConfig(**{**vars(config), "fps": float(fps)})

        trajectories = list(trajectories)
        report = AnalyticsReport(
            dataset_id=dataset_id, num_episodes=len(trajectories), fps=config.fps
        )
        logger.info(
            "Running %d analytics over %d episodes of %s",
            len(kinds),
            len(trajectories),
            dataset_id or "<unnamed>",
        )

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                pool.submit(ANALYTICS[kind], trajectories, config): kind for kind in kinds
            }
            for future in as_completed(futures):
                kind = futures[future]
                try:
                    report.results[kind] = future.result()
                except Exception as e:
                    logger.exception("Analytic %s failed", kind)
                    report.results[kind] = NotComputed(kind, f"failed: {e}")

        for kind, result in report.results.items():
            if isinstance(result, NotComputed):
                logger.debug("%s not computed: %s", kind, result.reason)
        return report

    def analyze_record(
        self, record: EpisodeRecord, dataset_id: str = "", fps: float | None = None
    ) -> AnalyticsReport:
        """Single-episode insights from a loaded episode record."""
        trajectory = EpisodeTrajectory.from_record(
            record,
            action_prefix=self.config.action_prefix,
            state_marker=self.config.state_marker,
        )
        return self.analyze(
            [trajectory],
            dataset_id=dataset_id,
            fps=fps,
            kinds=SINGLE_EPISODE_KINDS,
        )
