"""Dataset file sources: local directories and HuggingFace Hub repos.

Uses huggingface_hub for remote access with:
- Automatic caching of downloaded files
- One git revision per schema version ("v3.0", "v2.1", "v2.0")
- Bounded retries with backoff on transient network failures

Usage::

    from episcope.hub.source import open_source

    source = open_source("lerobot/pusht")
    info_path = source.fetch("meta/info.json", revision="v3.0")
"""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from huggingface_hub import HfApi, hf_hub_download
from huggingface_hub.utils import (
    EntryNotFoundError,
    GatedRepoError,
    HfHubHTTPError,
    LocalEntryNotFoundError,
    RepositoryNotFoundError,
    RevisionNotFoundError,
)

from episcope.config.models import DEFAULT_DATASET_URL, EpiscopeConfig
from episcope.core.exceptions import MissingFileError, TransientFetchError
from episcope.hub.url import build_resolve_url, is_hf_url, looks_like_repo_id, parse_hf_url

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_cache_dir() -> Path:
    """Get the cache directory for downloaded dataset files.

    Uses EPISCOPE_CACHE_DIR environment variable if set,
    otherwise falls back to ~/.cache/episcope/datasets.

    Returns:
        Path to cache directory.
    """
    cache_dir = os.environ.get("EPISCOPE_CACHE_DIR")
    if cache_dir:
        return Path(cache_dir) / "datasets"

    return Path.home() / ".cache" / "episcope" / "datasets"


def fetch_with_retry(
    operation: Callable[[], T],
    path: str,
    *,
    attempts: int = 3,
    backoff: float = 0.5,
    transient: tuple[type[BaseException], ...] = (OSError, TimeoutError),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run a fetch operation, retrying transient failures.

    MissingFileError is never retried. Any exception in ``transient`` is
    retried up to ``attempts`` times with exponential backoff, after which
    TransientFetchError is raised.

    Args:
        operation: Zero-argument callable performing the fetch.
        path: Path being fetched (for messages).
        attempts: Maximum number of attempts.
        backoff: Delay before the second attempt; doubles afterwards.
        transient: Exception types considered transient.
        sleep: Sleep function (injectable for tests).

    Returns:
        The operation's result.

    Raises:
        MissingFileError: If the file does not exist.
        TransientFetchError: If every attempt failed.
    """
    attempts = max(1, attempts)
    last_error: BaseException | None = None

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except MissingFileError:
            raise
        except transient as e:
            last_error = e
            logger.warning(
                "Fetching %s failed (attempt %d/%d): %s", path, attempt, attempts, e
            )
            if attempt < attempts:
                sleep(backoff * (2 ** (attempt - 1)))

    raise TransientFetchError(path, attempts, str(last_error))


class LocalSource:
    """Dataset stored in a local directory.

    A local checkout holds a single schema version, so revisions are ignored.
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @property
    def dataset_id(self) -> str:
        return str(self.root)

    @property
    def versioned(self) -> bool:
        return False

    def exists(self, path: str, revision: str | None = None) -> bool:
        return (self.root / path).is_file()

    def fetch(self, path: str, revision: str | None = None) -> Path:
        local = self.root / path
        if not local.is_file():
            raise MissingFileError(path)
        return local

    def url_for(self, path: str, revision: str | None = None) -> str:
        return str(self.root / path)


class HubSource:
    """Dataset stored in a HuggingFace Hub dataset repository.

    Args:
        repo_id: Dataset repo id (e.g., "lerobot/pusht").
        revision: Pin every request to this revision instead of the
            per-version branch.
        cache_dir: Where to cache downloaded files.
        timeout: Per-request timeout in seconds.
        retries: Attempts per file.
        backoff: Initial retry delay in seconds.
        base_url: Base URL used for resolvable video/file URLs.
    """

    _transient = (HfHubHTTPError, OSError, TimeoutError)

    def __init__(
        self,
        repo_id: str,
        *,
        revision: str | None = None,
        cache_dir: Path | str | None = None,
        timeout: float = 10.0,
        retries: int = 3,
        backoff: float = 0.5,
        base_url: str = DEFAULT_DATASET_URL,
    ) -> None:
        self.repo_id = repo_id
        self.revision = revision
        self.cache_dir = Path(cache_dir) if cache_dir else get_cache_dir()
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self.base_url = base_url
        self._api = HfApi()

    @property
    def dataset_id(self) -> str:
        return self.repo_id

    @property
    def versioned(self) -> bool:
        return self.revision is None

    def _revision(self, revision: str | None) -> str | None:
        return self.revision or revision

    def exists(self, path: str, revision: str | None = None) -> bool:
        rev = self._revision(revision)

        def _check() -> bool:
            try:
                return self._api.file_exists(
                    self.repo_id, path, repo_type="dataset", revision=rev
                )
            except (RevisionNotFoundError, RepositoryNotFoundError):
                return False

        return fetch_with_retry(
            _check,
            path,
            attempts=self.retries,
            backoff=self.backoff,
            transient=self._transient,
        )

    def fetch(self, path: str, revision: str | None = None) -> Path:
        rev = self._revision(revision)

        def _download() -> Path:
            try:
                local = hf_hub_download(
                    repo_id=self.repo_id,
                    filename=path,
                    repo_type="dataset",
                    revision=rev,
                    cache_dir=str(self.cache_dir),
                    etag_timeout=self.timeout,
                )
            except LocalEntryNotFoundError:
                # Offline and not cached: retry like any connection failure
                raise
            except (EntryNotFoundError, RevisionNotFoundError) as e:
                raise MissingFileError(path, rev) from e
            except GatedRepoError as e:
                raise ValueError(
                    f"Dataset '{self.repo_id}' requires authentication.\n"
                    f"Please run: huggingface-cli login\n"
                    f"And ensure you have access to: https://huggingface.co/datasets/{self.repo_id}"
                ) from e
            except RepositoryNotFoundError as e:
                raise ValueError(
                    f"Dataset not found: {self.repo_id}\n"
                    f"Check that the dataset exists at: https://huggingface.co/datasets/{self.repo_id}"
                ) from e
            return Path(local)

        return fetch_with_retry(
            _download,
            path,
            attempts=self.retries,
            backoff=self.backoff,
            transient=self._transient,
        )

    def url_for(self, path: str, revision: str | None = None) -> str:
        return build_resolve_url(
            self.repo_id, self._revision(revision) or "main", path, self.base_url
        )


def open_source(
    dataset: str | Path,
    config: EpiscopeConfig | None = None,
) -> LocalSource | HubSource:
    """Resolve a dataset reference to a source.

    Local directories win; otherwise hf:// URLs, Hub URLs and bare
    ``org/name`` repo ids map to a HubSource.

    Args:
        dataset: Local path, HuggingFace URL, or repo id.
        config: Runtime configuration (timeouts, retries, base URL).

    Returns:
        A DatasetSource implementation.

    Raises:
        MissingFileError: If the reference is neither a directory nor a repo.
    """
    config = config or EpiscopeConfig()
    dataset_str = str(dataset)

    local = Path(dataset_str)
    if local.is_dir():
        return LocalSource(local)

    hub_kwargs = dict(
        timeout=config.fetch_timeout,
        retries=config.fetch_retries,
        backoff=config.retry_backoff,
        base_url=config.dataset_url,
    )

    if is_hf_url(dataset_str):
        ref = parse_hf_url(dataset_str)
        return HubSource(ref.repo_id, revision=ref.revision, **hub_kwargs)

    if looks_like_repo_id(dataset_str):
        return HubSource(dataset_str, **hub_kwargs)

    raise MissingFileError(dataset_str)
