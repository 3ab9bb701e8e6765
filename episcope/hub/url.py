"""URL utilities for HuggingFace Hub datasets.

Supports various dataset references:
    hf://lerobot/pusht
    hf://lerobot/pusht@v2.1
    huggingface://lerobot/pusht
    https://huggingface.co/datasets/lerobot/pusht
    lerobot/pusht

and builds versioned "resolve" URLs for individual dataset files:
    https://huggingface.co/datasets/lerobot/pusht/resolve/v3.0/meta/info.json
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from episcope.config.models import DEFAULT_DATASET_URL

_REPO_ID = re.compile(r"^[\w.-]+/[\w.-]+$")


@dataclass
class HFDatasetRef:
    """Reference to a HuggingFace dataset."""

    repo_id: str  # e.g., "lerobot/pusht"
    revision: str | None = None  # Branch/tag/commit


def is_hf_url(path: str) -> bool:
    """Check if the path is a HuggingFace URL.

    Args:
        path: Path or URL to check.

    Returns:
        True if this is a HuggingFace URL.
    """
    if not isinstance(path, str):
        return False

    if path.startswith(("hf://", "huggingface://")):
        return True

    if "huggingface.co/datasets/" in path:
        return True

    return False


def looks_like_repo_id(path: str) -> bool:
    """Check if a bare string is an ``org/name`` repo id rather than a local path."""
    if not isinstance(path, str) or not _REPO_ID.match(path):
        return False
    return not Path(path).exists()


def parse_hf_url(url: str) -> HFDatasetRef:
    """Parse a HuggingFace dataset URL into components.

    Supported formats:
        hf://org/dataset
        hf://org/dataset@revision
        huggingface://org/dataset
        https://huggingface.co/datasets/org/dataset

    Args:
        url: HuggingFace dataset URL.

    Returns:
        HFDatasetRef with parsed components.

    Raises:
        ValueError: If URL format is invalid.
    """
    original_url = url

    if "huggingface.co/datasets/" in url:
        match = re.search(r"huggingface\.co/datasets/([^/]+/[^/?#]+)", url)
        if match:
            return HFDatasetRef(repo_id=match.group(1).rstrip("/"))
        raise ValueError(f"Invalid HuggingFace URL: {original_url}")

    if url.startswith("hf://"):
        url = url[5:]
    elif url.startswith("huggingface://"):
        url = url[14:]
    else:
        raise ValueError(f"Invalid HuggingFace URL scheme: {original_url}")

    revision = None
    if "@" in url:
        url, revision = url.rsplit("@", 1)

    if "/" not in url:
        raise ValueError(
            f"Invalid repo_id format: {url}. Expected 'org/dataset' format."
        )

    return HFDatasetRef(repo_id=url.strip("/"), revision=revision)


def build_resolve_url(
    repo_id: str,
    revision: str,
    path: str,
    base_url: str = DEFAULT_DATASET_URL,
) -> str:
    """Build the direct download URL of a file at a revision.

    Args:
        repo_id: Dataset repo id ("org/name").
        revision: Branch or tag, e.g. the schema version "v3.0".
        path: Dataset-relative file path.
        base_url: Hub datasets base URL.

    Returns:
        URL of the form ``{base_url}/{repo_id}/resolve/{revision}/{path}``.
    """
    return f"{base_url.rstrip('/')}/{repo_id}/resolve/{revision}/{path.lstrip('/')}"
