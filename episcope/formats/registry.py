"""Locator registry and schema version detection for Episcope.

The registry provides a plugin pattern for storage layouts. Locators
register themselves for the schema versions they understand using
decorators, and the registry handles version detection and instantiation.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from episcope.core.exceptions import (
    MalformedMetadataError,
    MissingFileError,
    UnsupportedVersionError,
)
from episcope.core.models import DatasetDescriptor

if TYPE_CHECKING:
    from episcope.config.models import EpiscopeConfig
    from episcope.core.protocols import DatasetSource, EpisodeLocator

logger = logging.getLogger(__name__)

INFO_PATH = "meta/info.json"
V3_EPISODES_PROBE = "meta/episodes/chunk-000/file-000.parquet"


class LocatorRegistry:
    """Central registry of episode locators keyed by schema version.

    Locators register themselves using class decorators:

        @LocatorRegistry.register_locator("v2.1", "v2.0")
        class LeRobotV2Locator:
            ...

    Usage:
        locator = LocatorRegistry.get_locator(descriptor, source, config)
    """

    _locators: dict[str, type] = {}

    @classmethod
    def register_locator(cls, *versions: str):
        """Decorator to register a locator class for one or more versions.

        Args:
            versions: Schema version tags (e.g., "v3.0").

        Returns:
            Decorator function.
        """

        def decorator(locator_cls: type) -> type:
            for version in versions:
                cls._locators[version] = locator_cls
            return locator_cls

        return decorator

    @classmethod
    def get_locator(
        cls,
        descriptor: DatasetDescriptor,
        source: DatasetSource,
        config: EpiscopeConfig | None = None,
    ) -> EpisodeLocator:
        """Get an instantiated locator for the descriptor's version.

        Raises:
            UnsupportedVersionError: If no locator handles the version.
        """
        if descriptor.version not in cls._locators:
            raise UnsupportedVersionError(
                descriptor.dataset_id,
                descriptor.version,
                supported=list(cls._locators.keys()),
            )
        return cls._locators[descriptor.version](source, descriptor, config)

    @classmethod
    def has_locator(cls, version: str) -> bool:
        return version in cls._locators

    @classmethod
    def list_versions(cls) -> list[str]:
        return list(cls._locators.keys())


def read_info(source: DatasetSource, revision: str | None) -> dict[str, Any]:
    """Fetch and parse meta/info.json at a revision.

    Raises:
        MissingFileError: If info.json does not exist there.
        MalformedMetadataError: If it is not a JSON object.
    """
    path = source.fetch(INFO_PATH, revision)
    try:
        with open(path) as f:
            info = json.load(f)
    except json.JSONDecodeError as e:
        raise MalformedMetadataError(source.dataset_id, INFO_PATH, f"is not valid JSON ({e})") from e

    if not isinstance(info, dict):
        raise MalformedMetadataError(source.dataset_id, INFO_PATH, "is not a JSON object")
    return info


def detect_version(
    source: DatasetSource, supported: list[str]
) -> tuple[str, dict[str, Any]]:
    """Find the first supported schema version a dataset provides.

    Versions are tried in allow-list order. A candidate qualifies when its
    info.json exists, parses and declares features; a v3 candidate must
    also have the first chunked episodes-metadata file. Sources that are not
    versioned (local directories, pinned Hub revisions) are checked against
    the ``codebase_version`` declared in info.json.

    Args:
        source: Where dataset files come from.
        supported: Allowed version tags, in preference order.

    Returns:
        Tuple of (version tag, parsed info.json).

    Raises:
        UnsupportedVersionError: If no supported version qualifies.
    """
    if not source.versioned:
        return _detect_declared_version(source, supported)

    for version in supported:
        if not source.exists(INFO_PATH, version):
            logger.debug("No %s at revision %s", INFO_PATH, version)
            continue

        try:
            info = read_info(source, version)
        except (MissingFileError, MalformedMetadataError) as e:
            logger.debug("Skipping revision %s: %s", version, e)
            continue

        if not info.get("features"):
            continue

        if version.startswith("v3") and not source.exists(V3_EPISODES_PROBE, version):
            logger.debug("Revision %s lacks %s", version, V3_EPISODES_PROBE)
            continue

        return version, info

    raise UnsupportedVersionError(source.dataset_id, supported=supported)


def _detect_declared_version(
    source: DatasetSource, supported: list[str]
) -> tuple[str, dict[str, Any]]:
    try:
        info = read_info(source, None)
    except MissingFileError as e:
        raise UnsupportedVersionError(source.dataset_id, supported=supported) from e

    declared = info.get("codebase_version")
    version = str(declared).strip() if declared else None
    if version and not version.startswith("v"):
        version = f"v{version}"

    if version not in supported or not info.get("features"):
        raise UnsupportedVersionError(source.dataset_id, version, supported=supported)

    if version.startswith("v3") and not source.exists(V3_EPISODES_PROBE):
        raise UnsupportedVersionError(source.dataset_id, version, supported=supported)

    return version, info


def load_descriptor(
    source: DatasetSource, supported: list[str]
) -> DatasetDescriptor:
    """Detect the version and build the dataset descriptor.

    Raises:
        UnsupportedVersionError: If no supported version qualifies.
        MalformedMetadataError: If info.json lacks features or fps.
    """
    version, info = detect_version(source, supported)
    logger.info("Detected %s as version %s", source.dataset_id, version)
    return DatasetDescriptor.from_info(source.dataset_id, version, info)
