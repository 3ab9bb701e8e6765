"""Custom exceptions for Episcope.

All Episcope-specific exceptions inherit from EpiscopeError, allowing users
to catch all Episcope errors with a single except clause if desired.
"""

from __future__ import annotations


class EpiscopeError(Exception):
    """Base exception for all Episcope errors."""

    pass


class UnsupportedVersionError(EpiscopeError):
    """Raised when a dataset's schema version is outside the allow-list.

    Attributes:
        dataset_id: Dataset identifier (repo id or local path).
        version: The detected version tag, or None if none was found.
        supported: Allowed version tags.
    """

    def __init__(
        self,
        dataset_id: str,
        version: str | None = None,
        supported: list[str] | None = None,
    ):
        self.dataset_id = dataset_id
        self.version = version
        self.supported = supported or []

        allowed = ", ".join(v.lstrip("v") for v in self.supported) or "none"
        if version:
            super().__init__(
                f"Dataset {dataset_id} uses unsupported version '{version}'. "
                f"Only dataset versions {allowed} are supported."
            )
        else:
            super().__init__(
                f"Dataset {dataset_id} is not compatible with this tool. "
                f"Only dataset versions {allowed} are supported."
            )


class EpisodeNotFoundError(EpiscopeError):
    """Raised when a specific episode cannot be found.

    Attributes:
        episode_id: The requested episode index.
        dataset_id: Dataset identifier.
        searched_file: Last metadata file that was scanned, if any.
    """

    def __init__(
        self,
        episode_id: int,
        dataset_id: str | None = None,
        searched_file: str | None = None,
    ):
        self.episode_id = episode_id
        self.dataset_id = dataset_id
        self.searched_file = searched_file

        if searched_file:
            message = (
                f"Episode {episode_id} not found in metadata "
                f"(searched up to {searched_file})"
            )
        else:
            message = f"Episode {episode_id} not found"
        if dataset_id:
            message = f"{message} in dataset {dataset_id}"
        super().__init__(message)


class MalformedMetadataError(EpiscopeError):
    """Raised when dataset metadata is unusable.

    Attributes:
        dataset_id: Dataset identifier.
        field_name: Metadata field that is missing or invalid.
        reason: Specific reason for failure.
    """

    def __init__(self, dataset_id: str, field_name: str, reason: str):
        self.dataset_id = dataset_id
        self.field_name = field_name
        self.reason = reason
        super().__init__(
            f"Malformed metadata in {dataset_id}: field '{field_name}' {reason}"
        )


class MissingFileError(EpiscopeError):
    """Raised when a dataset file does not exist.

    Attributes:
        path: Dataset-relative path of the file.
        revision: Revision the file was requested at.
    """

    def __init__(self, path: str, revision: str | None = None):
        self.path = path
        self.revision = revision

        if revision:
            super().__init__(f"File not found: {path} (revision {revision})")
        else:
            super().__init__(f"File not found: {path}")


class TransientFetchError(EpiscopeError):
    """Raised when fetching a file keeps failing after all retries.

    Attributes:
        path: Dataset-relative path of the file.
        attempts: Number of attempts made.
        reason: Last underlying error message.
    """

    def __init__(self, path: str, attempts: int, reason: str):
        self.path = path
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Failed to fetch '{path}' after {attempts} attempt(s): {reason}"
        )


class InsufficientSampleError(EpiscopeError):
    """Raised when too few episodes load for cross-episode analytics.

    Attributes:
        dataset_id: Dataset identifier.
        loaded: Number of episodes that loaded.
        required: Minimum number needed.
    """

    def __init__(self, dataset_id: str, loaded: int, required: int = 2):
        self.dataset_id = dataset_id
        self.loaded = loaded
        self.required = required
        super().__init__(
            f"Only {loaded} episode(s) of {dataset_id} could be loaded; "
            f"at least {required} are needed for cross-episode analytics"
        )
