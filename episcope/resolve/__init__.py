"""Dataset and episode resolution."""

from episcope.resolve.resolver import EpisodeResolver

__all__ = ["EpisodeResolver"]
