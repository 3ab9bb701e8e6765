"""Tests for EpisodeResolver and the module-level API."""

import pytest

import episcope
from episcope.config.models import EpiscopeConfig
from episcope.core.cache import TTLCache
from episcope.core.exceptions import (
    EpisodeNotFoundError,
    InsufficientSampleError,
    UnsupportedVersionError,
)
from episcope.hub.source import LocalSource, open_source
from episcope.resolve import EpisodeResolver


class CountingSource(LocalSource):
    """LocalSource recording every fetched path in a shared list."""

    def __init__(self, root, fetched):
        super().__init__(root)
        self.fetched = fetched

    def fetch(self, path, revision=None):
        self.fetched.append(path)
        return super().fetch(path, revision)


@pytest.fixture
def fetched():
    return []


@pytest.fixture
def counting_resolver(fetched):
    return EpisodeResolver(source_factory=lambda ref, config: CountingSource(ref, fetched))


class TestResolveEpisode:
    """Test single-episode resolution."""

    def test_resolve_v3(self, v3_dataset):
        location, record = EpisodeResolver().resolve_episode(v3_dataset, 3)

        assert location.episode_index == 3
        assert location.from_index == 30
        assert record.episode_index == 3
        assert record.num_frames == 10
        assert record.task == "Stack cups"

    def test_resolve_v2(self, v2_dataset):
        location, record = EpisodeResolver().resolve_episode(v2_dataset, 2)
        assert location.data_path == "data/chunk-000/episode_000002.parquet"
        assert record.task == "Push the block"

    def test_resolve_is_idempotent(self, v3_dataset):
        resolver = EpisodeResolver()
        first = resolver.resolve_episode(v3_dataset, 1)
        second = resolver.resolve_episode(v3_dataset, 1)
        assert first == second

    def test_missing_episode(self, v3_dataset):
        with pytest.raises(EpisodeNotFoundError):
            EpisodeResolver().resolve_episode(v3_dataset, 9)

    def test_version_outside_allow_list(self, v2_dataset):
        resolver = EpisodeResolver(EpiscopeConfig(supported_versions=["v3.0"]))
        with pytest.raises(UnsupportedVersionError):
            resolver.resolve_episode(v2_dataset, 0)

    def test_module_level_resolve(self, v2_dataset):
        location, record = episcope.resolve_episode(str(v2_dataset), 0)
        assert location.episode_index == 0
        assert record.num_frames == 10


class TestResolverCaching:
    """Test descriptor and location caching."""

    def test_descriptor_loaded_once(self, counting_resolver, fetched, v3_dataset):
        counting_resolver.load_descriptor(v3_dataset)
        counting_resolver.load_descriptor(v3_dataset)
        assert fetched.count("meta/info.json") == 1

    def test_location_cached(self, counting_resolver, fetched, v3_dataset):
        counting_resolver.locate(v3_dataset, 3)
        scanned = fetched.count("meta/episodes/chunk-000/file-001.parquet")
        counting_resolver.locate(v3_dataset, 3)
        assert fetched.count("meta/episodes/chunk-000/file-001.parquet") == scanned

    def test_injected_caches(self, v2_dataset):
        descriptors = TTLCache(ttl=60.0)
        locations = TTLCache(ttl=60.0)
        resolver = EpisodeResolver(descriptor_cache=descriptors, location_cache=locations)

        resolver.locate(v2_dataset, 1)

        assert str(v2_dataset) in descriptors
        assert (str(v2_dataset), 1) in locations

    def test_default_source_factory(self, v2_dataset):
        resolver = EpisodeResolver()
        assert isinstance(resolver.source_for(v2_dataset), LocalSource)
        assert resolver._source_factory is open_source


class TestDatasetViews:
    """Test summary, adjacent videos and lengths."""

    def test_summary(self, v3_dataset):
        summary = EpisodeResolver().dataset_summary(v3_dataset)

        assert summary.version == "v3.0"
        assert summary.robot_type == "koch"
        assert summary.total_episodes == 4
        assert summary.total_tasks == 2
        assert summary.dataset_size_mb == 11.2
        assert summary.cameras[0].name == "observation.images.top"
        assert (summary.cameras[0].height, summary.cameras[0].width) == (96, 128)

    def test_adjacent_videos(self, v3_dataset):
        resolver = EpisodeResolver()
        assert sorted(resolver.adjacent_videos(v3_dataset, 0)) == [1, 2]
        assert sorted(resolver.adjacent_videos(v3_dataset, 2)) == [0, 1, 3]

        videos = resolver.adjacent_videos(v3_dataset, 3, radius=1)
        assert list(videos) == [2]
        assert videos[2][0].start == 2.0

    def test_episode_lengths(self, v2_dataset):
        assert EpisodeResolver().episode_lengths(v2_dataset) == [(0, 10), (1, 10), (2, 10)]

    def test_length_stats(self, v3_dataset):
        stats = EpisodeResolver().length_stats(v3_dataset)
        assert stats.num_episodes == 4
        assert stats.mean_seconds == 1.0
        assert stats.histogram[0].count == 4


class TestSampling:
    """Test cross-episode sampling through the resolver."""

    def test_sample_v3(self, v3_dataset):
        trajectories = EpisodeResolver().sample(v3_dataset)
        assert [t.episode_index for t in trajectories] == [0, 1, 2, 3]
        assert all(t.states is not None for t in trajectories)

    def test_sample_v2(self, v2_dataset):
        trajectories = EpisodeResolver().sample(v2_dataset)
        assert len(trajectories) == 3
        assert trajectories[0].action_names == ["action | shoulder", "action | gripper"]

    def test_sample_without_state_feature(self, v2_dataset):
        config = EpiscopeConfig()
        config.state_key = "observation.missing"
        trajectories = EpisodeResolver(config).sample(v2_dataset)
        assert all(t.states is None for t in trajectories)

    def test_insufficient_sample(self, v2_dataset):
        for ep in (1, 2):
            (v2_dataset / "data" / "chunk-000" / f"episode_{ep:06d}.parquet").unlink()
        with pytest.raises(InsufficientSampleError) as excinfo:
            EpisodeResolver().sample(v2_dataset)
        assert excinfo.value.loaded == 1
