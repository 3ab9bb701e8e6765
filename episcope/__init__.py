"""Episcope - Episode inspection and cross-episode analytics for LeRobot datasets.

Episcope resolves where an episode of a LeRobot dataset lives (across the
v2.x per-episode layout and the v3.0 chunked layout), turns its parquet
rows into chart-ready series groups, and computes dataset-level training
insights from a sample of episodes.

Key Characteristics:
- Works on local directories and Hugging Face Hub datasets alike
- Schema version detected from a configurable allow-list
- Analytics degrade to "not computed" instead of failing

Example:
    >>> import episcope
    >>> location, record = episcope.resolve_episode("lerobot/pusht", 3)
    >>> print(location.data_path, record.task)

    >>> report = episcope.analyze("lerobot/pusht")
    >>> print(report.computed("autocorrelation").suggested_chunk)
"""

from episcope.analytics import (
    AnalyticsConfig,
    AnalyticsReport,
    CrossEpisodeAnalyzer,
    EpisodeTrajectory,
    NotComputed,
)
from episcope.charts import column_min_max, group_series
from episcope.config import EpiscopeConfig
from episcope.core.exceptions import (
    EpiscopeError,
    EpisodeNotFoundError,
    InsufficientSampleError,
    MalformedMetadataError,
    MissingFileError,
    TransientFetchError,
    UnsupportedVersionError,
)
from episcope.core.models import (
    ChartGroup,
    DatasetDescriptor,
    DatasetSummary,
    EpisodeLocation,
    EpisodeRecord,
    VideoSegment,
)
from episcope.formats import LocatorRegistry
from episcope.resolve import EpisodeResolver
from episcope.stats import EpisodeLengthStats, episode_length_stats

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Core models
    "ChartGroup",
    "DatasetDescriptor",
    "DatasetSummary",
    "EpisodeLocation",
    "EpisodeRecord",
    "VideoSegment",
    # Exceptions
    "EpiscopeError",
    "EpisodeNotFoundError",
    "InsufficientSampleError",
    "MalformedMetadataError",
    "MissingFileError",
    "TransientFetchError",
    "UnsupportedVersionError",
    # Configuration
    "EpiscopeConfig",
    "AnalyticsConfig",
    # Registry
    "LocatorRegistry",
    # Resolution
    "EpisodeResolver",
    # Charts and stats
    "column_min_max",
    "group_series",
    "EpisodeLengthStats",
    "episode_length_stats",
    # Analytics
    "AnalyticsReport",
    "CrossEpisodeAnalyzer",
    "EpisodeTrajectory",
    "NotComputed",
    # Module-level functions
    "resolve_episode",
    "analyze",
]


def resolve_episode(
    dataset: str,
    episode_index: int,
    config: EpiscopeConfig | None = None,
) -> tuple[EpisodeLocation, EpisodeRecord]:
    """Locate one episode and load its rows.

    Args:
        dataset: Local path, Hub URL or repo id.
        episode_index: Episode to load.
        config: Runtime configuration (defaults to EPISCOPE_* environment).

    Returns:
        Tuple of (EpisodeLocation, EpisodeRecord).

    Example:
        >>> location, record = episcope.resolve_episode("./pusht", 0)
    """
    resolver = EpisodeResolver(config or EpiscopeConfig.from_env())
    return resolver.resolve_episode(dataset, episode_index)


def analyze(
    dataset: str,
    config: EpiscopeConfig | None = None,
    **options,
) -> AnalyticsReport:
    """Sample a dataset and run every cross-episode analytic.

    Args:
        dataset: Local path, Hub URL or repo id.
        config: Runtime configuration (defaults to EPISCOPE_* environment).
        **options: AnalyticsConfig fields.

    Returns:
        AnalyticsReport with one result per analytic.

    Example:
        >>> report = episcope.analyze("lerobot/pusht", top_jerky_episodes=5)
    """
    config = config or EpiscopeConfig.from_env()
    resolver = EpisodeResolver(config)
    descriptor = resolver.load_descriptor(dataset)
    trajectories = resolver.sample(dataset)

    analyzer = CrossEpisodeAnalyzer(
        AnalyticsConfig(**{"fps": descriptor.fps, **options}),
        max_workers=config.num_workers,
    )
    return analyzer.analyze(trajectories, dataset_id=descriptor.dataset_id)
