"""Cross-episode analytics for robot-learning datasets.

Compute dataset-level training insights from a sample of episodes:
action autocorrelation (chunk length), smoothness, cross-episode variance,
multimodality, state-action alignment, demonstrator speed variance and
trajectory clustering.

Usage::

    from episcope.analytics import CrossEpisodeAnalyzer

    analyzer = CrossEpisodeAnalyzer(fps=30.0)
    report = analyzer.analyze(trajectories, dataset_id="lerobot/pusht")
    print(report.computed("autocorrelation").suggested_chunk)
"""

from episcope.analytics.analyzer import CrossEpisodeAnalyzer
from episcope.analytics.config import AnalyticsConfig
from episcope.analytics.models import (
    ANALYTIC_KINDS,
    AnalyticsReport,
    EpisodeTrajectory,
    NotComputed,
)

__all__ = [
    "ANALYTIC_KINDS",
    "AnalyticsConfig",
    "AnalyticsReport",
    "CrossEpisodeAnalyzer",
    "EpisodeTrajectory",
    "NotComputed",
]
