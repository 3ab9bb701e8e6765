"""Episode resolution with cached descriptors and locations.

The resolver is the entry point for single-episode views and for
cross-episode sampling. It detects the dataset's schema version, picks
the matching locator, and caches descriptors and episode locations in
injectable TTL caches.

Usage::

    resolver = EpisodeResolver()
    location, record = resolver.resolve_episode("lerobot/pusht", 3)
    summary = resolver.dataset_summary("lerobot/pusht")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING

from episcope.analytics.sampling import sample_trajectories
from episcope.config.models import EpiscopeConfig
from episcope.core.cache import TTLCache
from episcope.core.exceptions import EpiscopeError
from episcope.core.models import (
    DatasetDescriptor,
    DatasetSummary,
    EpisodeLocation,
    EpisodeRecord,
    VideoSegment,
)
from episcope.core.protocols import DatasetSource, EpisodeLocator
from episcope.formats import LocatorRegistry, load_descriptor
from episcope.hub.source import open_source
from episcope.stats.lengths import episode_length_stats
from episcope.stats.models import EpisodeLengthStats

if TYPE_CHECKING:
    from episcope.analytics.models import EpisodeTrajectory

logger = logging.getLogger(__name__)


class EpisodeResolver:
    """Resolve datasets and episodes, caching what is expensive to find.

    Args:
        config: Runtime configuration.
        descriptor_cache: Cache of DatasetDescriptor keyed by dataset id.
        location_cache: Cache of EpisodeLocation keyed by (dataset id, episode).
        source_factory: Builds a DatasetSource from a dataset reference.
    """

    def __init__(
        self,
        config: EpiscopeConfig | None = None,
        descriptor_cache: TTLCache[DatasetDescriptor] | None = None,
        location_cache: TTLCache[EpisodeLocation] | None = None,
        source_factory: Callable[[str, EpiscopeConfig], DatasetSource] | None = None,
    ) -> None:
        self.config = config or EpiscopeConfig()
        # Empty caches are falsy, so compare against None explicitly
        if descriptor_cache is None:
            descriptor_cache = TTLCache(
                ttl=self.config.cache_ttl, max_entries=self.config.cache_max_entries
            )
        if location_cache is None:
            location_cache = TTLCache(
                ttl=self.config.cache_ttl, max_entries=self.config.cache_max_entries
            )
        self.descriptor_cache = descriptor_cache
        self.location_cache = location_cache
        self._source_factory = source_factory or open_source

    def source_for(self, dataset: str | Path) -> DatasetSource:
        return self._source_factory(str(dataset), self.config)

    def load_descriptor(self, dataset: str | Path) -> DatasetDescriptor:
        """Detect the schema version and load info.json, cached per dataset.

        Raises:
            UnsupportedVersionError: If no allow-listed version matches.
            MalformedMetadataError: If info.json is unusable.
        """
        key = str(dataset)
        return self.descriptor_cache.get_or_load(
            key,
            lambda: load_descriptor(self.source_for(key), self.config.supported_versions),
        )

    def locator_for(self, dataset: str | Path) -> EpisodeLocator:
        descriptor = self.load_descriptor(dataset)
        return LocatorRegistry.get_locator(descriptor, self.source_for(dataset), self.config)

    def locate(self, dataset: str | Path, episode_index: int) -> EpisodeLocation:
        """Find where an episode lives, cached per (dataset, episode).

        Raises:
            EpisodeNotFoundError: If the episode does not exist.
        """
        key = (str(dataset), int(episode_index))
        return self.location_cache.get_or_load(
            key, lambda: self.locator_for(dataset).locate(int(episode_index))
        )

    def resolve_episode(
        self, dataset: str | Path, episode_index: int
    ) -> tuple[EpisodeLocation, EpisodeRecord]:
        """Locate an episode and load its normalized rows.

        Args:
            dataset: Local path, Hub URL or repo id.
            episode_index: Episode to load.

        Returns:
            Tuple of (EpisodeLocation, EpisodeRecord).
        """
        location = self.locate(dataset, episode_index)
        record = self.locator_for(dataset).load_record(location)
        logger.debug(
            "Resolved episode %d of %s: %d rows", episode_index, dataset, record.num_frames
        )
        return location, record

    def dataset_summary(self, dataset: str | Path) -> DatasetSummary:
        return DatasetSummary.from_descriptor(self.load_descriptor(dataset))

    def adjacent_videos(
        self, dataset: str | Path, episode_index: int, radius: int = 2
    ) -> dict[int, tuple[VideoSegment, ...]]:
        """Video segments of the episodes around ``episode_index``.

        Neighbours outside ``[0, total_episodes)`` and neighbours that fail
        to resolve are skipped.
        """
        total = self.load_descriptor(dataset).total_episodes
        start = max(0, episode_index - radius)
        end = min(total - 1, episode_index + radius)

        videos: dict[int, tuple[VideoSegment, ...]] = {}
        for neighbour in range(start, end + 1):
            if neighbour == episode_index:
                continue
            try:
                videos[neighbour] = self.locate(dataset, neighbour).videos
            except EpiscopeError as e:
                logger.warning("Skipping adjacent episode %d: %s", neighbour, e)
        return videos

    def episode_lengths(self, dataset: str | Path) -> list[tuple[int, int]]:
        """(episode_index, frame count) for every episode with metadata."""
        return self.locator_for(dataset).episode_lengths()

    def length_stats(self, dataset: str | Path) -> EpisodeLengthStats | None:
        descriptor = self.load_descriptor(dataset)
        return episode_length_stats(self.episode_lengths(dataset), descriptor.fps)

    def sample(self, dataset: str | Path) -> list[EpisodeTrajectory]:
        """Load the cross-episode sample used by the analytics engine."""
        return sample_trajectories(self.locator_for(dataset), self.config)
