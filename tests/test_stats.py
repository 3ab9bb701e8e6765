"""Tests for episode-length statistics."""

import pytest

from episcope.stats.lengths import episode_length_stats, length_histogram, nice_bin_width


class TestNiceBinWidth:
    """Test nice bin width rounding."""

    def test_rounds_up_to_nice_steps(self):
        assert nice_bin_width(0.3) == pytest.approx(0.5)
        assert nice_bin_width(2) == 2
        assert nice_bin_width(2.2) == 2.5
        assert nice_bin_width(7) == 10


class TestEpisodeLengthStats:
    """Test duration summaries."""

    def test_empty(self):
        assert episode_length_stats([], fps=30) is None

    def test_identical_lengths(self):
        stats = episode_length_stats([(0, 10), (1, 10), (2, 10)], fps=10)

        assert stats.num_episodes == 3
        assert stats.mean_seconds == 1.0
        assert stats.median_seconds == 1.0
        assert stats.std_seconds == 0.0
        assert len(stats.histogram) == 1
        assert stats.histogram[0].label == "1.0s"
        assert stats.histogram[0].count == 3

    def test_spread_lengths(self):
        lengths = [(i, 10 * (i + 1)) for i in range(20)]
        stats = episode_length_stats(lengths, fps=10)

        assert stats.min_seconds == 1.0
        assert stats.max_seconds == 20.0
        assert stats.mean_seconds == 10.5
        assert stats.median_seconds == 10.5
        assert stats.std_seconds == pytest.approx(5.77)
        assert [e.episode_index for e in stats.shortest] == [0, 1, 2, 3, 4]
        assert [e.episode_index for e in stats.longest] == [19, 18, 17, 16, 15]

        assert len(stats.histogram) == 10
        assert stats.histogram[0].lo == 0.0
        assert stats.histogram[0].hi == 2.0
        assert sum(b.count for b in stats.histogram) == 20

    def test_invalid_fps_treated_as_one(self):
        stats = episode_length_stats([(0, 5), (1, 7)], fps=0)
        assert stats.min_seconds == 5.0
        assert stats.max_seconds == 7.0

    def test_to_dict(self):
        stats = episode_length_stats([(0, 30), (1, 60)], fps=30)
        d = stats.to_dict()
        assert d["num_episodes"] == 2
        assert d["shortest"][0] == {"episode_index": 0, "frames": 30, "seconds": 1.0}


class TestLengthHistogram:
    """Test histogram binning."""

    def test_empty(self):
        assert length_histogram([]) == []

    def test_outliers_are_clamped(self):
        values = sorted([1.0] * 150 + [2.0] * 49 + [100.0])
        bins = length_histogram(values)
        assert sum(b.count for b in bins) == 200
        assert bins[-1].count >= 1
        assert bins[-1].hi < 100.0
