"""Protocol interfaces for Episcope.

This module defines the interfaces that dataset sources and episode
locators must satisfy. Using protocols allows for type-safe duck typing.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from episcope.core.models import DatasetDescriptor, EpisodeLocation, EpisodeRecord
    from episcope.analytics.models import EpisodeTrajectory


@runtime_checkable
class DatasetSource(Protocol):
    """Where dataset files come from.

    A source maps dataset-relative paths (e.g. ``meta/info.json``) at a
    revision to local files. Local directories ignore the revision; Hub
    repositories keep one git revision per schema version.
    """

    @property
    def dataset_id(self) -> str:
        """Identifier used in messages and cache keys."""
        ...

    @property
    def versioned(self) -> bool:
        """True when each schema version lives at its own revision.

        Sources that ignore the revision argument (local directories, Hub
        references pinned to one revision) return False; their version is
        whatever info.json declares.
        """
        ...

    def exists(self, path: str, revision: str | None = None) -> bool:
        """Check whether a file exists without downloading it.

        Args:
            path: Dataset-relative path.
            revision: Branch/tag to look at.

        Returns:
            True if the file exists.
        """
        ...

    def fetch(self, path: str, revision: str | None = None) -> Path:
        """Make a file available locally and return its path.

        Args:
            path: Dataset-relative path.
            revision: Branch/tag to fetch from.

        Returns:
            Local filesystem path.

        Raises:
            MissingFileError: If the file does not exist.
            TransientFetchError: If the fetch failed for another reason.
        """
        ...

    def url_for(self, path: str, revision: str | None = None) -> str:
        """Return a URL (or local path string) a player can open directly."""
        ...


@runtime_checkable
class EpisodeLocator(Protocol):
    """Strategy interface for one storage layout.

    Each layout (legacy per-episode files, chunked files) implements this
    protocol. Locators are responsible for:
    - Finding which file and row range hold an episode
    - Loading an episode's rows as an EpisodeRecord
    - Enumerating episodes and loading action/state trajectories in bulk
    """

    @property
    def layout_name(self) -> str:
        """Return identifier like 'lerobot-v2', 'lerobot-v3'."""
        ...

    def locate(self, episode_index: int) -> EpisodeLocation:
        """Resolve where an episode lives.

        Raises:
            EpisodeNotFoundError: If the episode does not exist.
        """
        ...

    def load_record(self, location: EpisodeLocation) -> EpisodeRecord:
        """Read and normalize the rows of a located episode."""
        ...

    def list_episodes(self) -> list[EpisodeLocation]:
        """Return the location of every episode in index order."""
        ...

    def episode_lengths(self) -> list[tuple[int, int]]:
        """Return (episode_index, frame_count) for every episode."""
        ...

    def load_trajectories(
        self,
        locations: list[EpisodeLocation],
        action_key: str,
        state_key: str | None,
        max_frames: int,
    ) -> list[EpisodeTrajectory]:
        """Load action (and state) matrices for many episodes.

        Episodes or files that fail to load are skipped.
        """
        ...

    @property
    def descriptor(self) -> DatasetDescriptor:
        ...
