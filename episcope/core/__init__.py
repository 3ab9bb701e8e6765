"""Core domain models, protocols and exceptions for Episcope."""

from episcope.core.cache import TTLCache
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
    SERIES_NAME_DELIMITER,
    CameraInfo,
    ChartGroup,
    DatasetDescriptor,
    DatasetSummary,
    EpisodeLocation,
    EpisodeRecord,
    FeatureDescriptor,
    VideoSegment,
)
from episcope.core.protocols import DatasetSource, EpisodeLocator

__all__ = [
    # Models
    "SERIES_NAME_DELIMITER",
    "CameraInfo",
    "ChartGroup",
    "DatasetDescriptor",
    "DatasetSummary",
    "EpisodeLocation",
    "EpisodeRecord",
    "FeatureDescriptor",
    "VideoSegment",
    # Protocols
    "DatasetSource",
    "EpisodeLocator",
    # Cache
    "TTLCache",
    # Exceptions
    "EpiscopeError",
    "EpisodeNotFoundError",
    "InsufficientSampleError",
    "MalformedMetadataError",
    "MissingFileError",
    "TransientFetchError",
    "UnsupportedVersionError",
]
