"""Core domain models for Episcope.

This module defines the canonical in-memory representations shared by the
locators, the chart grouping engine and the analytics engine:
dataset descriptors, episode locations, episode records and chart groups.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np

from episcope.core.coerce import coerce_float, coerce_int
from episcope.core.exceptions import MalformedMetadataError

SERIES_NAME_DELIMITER = " | "

CHARTABLE_DTYPES = ("float32", "int32")

DEFAULT_CHUNK_SIZE = 1000


def _resolve_names(names: Any) -> list[str] | None:
    """Unwrap an info.json ``names`` entry down to a flat list.

    ``names`` may be a list, a dict such as ``{"motors": [...]}`` (take the
    first value, repeatedly), or missing.
    """
    while isinstance(names, dict):
        if not names:
            return None
        names = next(iter(names.values()))
    if isinstance(names, (list, tuple)):
        return [str(n) for n in names]
    return None


@dataclass(frozen=True)
class FeatureDescriptor:
    """Schema for a single feature declared in info.json.

    Attributes:
        name: Feature key (e.g., "observation.state").
        dtype: Element type string as written by the dataset ("float32", "video", ...).
        shape: Shape excluding the time dimension. Empty = scalar.
        names: Optional per-element names used to label vector series.
    """

    name: str
    dtype: str
    shape: tuple[int, ...] = ()
    names: tuple[str, ...] | None = None

    @classmethod
    def from_info(cls, name: str, spec: dict[str, Any]) -> "FeatureDescriptor":
        """Build a descriptor from an info.json features entry."""
        raw_shape = spec.get("shape") or []
        shape = tuple(coerce_int(s) for s in raw_shape)
        names = _resolve_names(spec.get("names"))
        return cls(
            name=name,
            dtype=str(spec.get("dtype", "float32")),
            shape=shape,
            names=tuple(names) if names is not None else None,
        )

    @property
    def is_video(self) -> bool:
        return self.dtype == "video"

    @property
    def is_chartable(self) -> bool:
        """True for 1-D float32/int32 features that can be plotted as series."""
        return self.dtype in CHARTABLE_DTYPES and len(self.shape) == 1

    @property
    def size(self) -> int:
        return self.shape[0] if self.shape else 1

    def series_names(self) -> list[str]:
        """Expand this feature into ``"<feature> | <element>"`` series names."""
        if self.names is not None:
            return [f"{self.name}{SERIES_NAME_DELIMITER}{n}" for n in self.names]
        return [
            f"{self.name}{SERIES_NAME_DELIMITER}{i}" for i in range(self.size or 1)
        ]


@dataclass(frozen=True)
class DatasetDescriptor:
    """Immutable per-dataset metadata loaded from meta/info.json.

    Attributes:
        dataset_id: Repo id or local path the dataset was loaded from.
        version: Schema version tag ("v3.0", "v2.1", "v2.0").
        fps: Recording frame rate.
        features: Feature name -> descriptor, in info.json order.
        total_episodes: Number of episodes.
        total_frames: Number of frames across all episodes.
        chunks_size: Episodes per chunk.
        data_path: Legacy data path template.
        video_path: Legacy video path template (None for image-only datasets).
        robot_type: Robot identifier if declared.
        total_tasks: Number of distinct tasks.
        data_files_size_in_mb: Declared size of data files.
        video_files_size_in_mb: Declared size of video files.
    """

    dataset_id: str
    version: str
    fps: float
    features: dict[str, FeatureDescriptor] = field(default_factory=dict)
    total_episodes: int = 0
    total_frames: int = 0
    chunks_size: int = DEFAULT_CHUNK_SIZE
    data_path: str | None = None
    video_path: str | None = None
    robot_type: str | None = None
    total_tasks: int = 0
    data_files_size_in_mb: float = 0.0
    video_files_size_in_mb: float = 0.0

    @classmethod
    def from_info(
        cls, dataset_id: str, version: str, info: dict[str, Any]
    ) -> "DatasetDescriptor":
        """Build a descriptor from a parsed info.json.

        Args:
            dataset_id: Dataset identifier.
            version: Detected schema version.
            info: Parsed info.json contents.

        Returns:
            DatasetDescriptor.

        Raises:
            MalformedMetadataError: If features or fps are missing.
        """
        raw_features = info.get("features")
        if not isinstance(raw_features, dict) or not raw_features:
            raise MalformedMetadataError(dataset_id, "features", "is missing or empty")

        fps = coerce_float(info.get("fps"), default=0.0)
        if fps <= 0:
            raise MalformedMetadataError(dataset_id, "fps", "must be a positive number")

        features = {
            name: FeatureDescriptor.from_info(name, spec if isinstance(spec, dict) else {})
            for name, spec in raw_features.items()
        }

        chunks_size = coerce_int(info.get("chunks_size"), default=DEFAULT_CHUNK_SIZE)

        return cls(
            dataset_id=dataset_id,
            version=version,
            fps=fps,
            features=features,
            total_episodes=coerce_int(info.get("total_episodes")),
            total_frames=coerce_int(info.get("total_frames")),
            chunks_size=chunks_size if chunks_size >= 1 else DEFAULT_CHUNK_SIZE,
            data_path=info.get("data_path"),
            video_path=info.get("video_path"),
            robot_type=info.get("robot_type"),
            total_tasks=coerce_int(info.get("total_tasks")),
            data_files_size_in_mb=coerce_float(info.get("data_files_size_in_mb")),
            video_files_size_in_mb=coerce_float(info.get("video_files_size_in_mb")),
        )

    @property
    def video_keys(self) -> list[str]:
        return [name for name, f in self.features.items() if f.is_video]

    @property
    def is_chunked(self) -> bool:
        return self.version.startswith("v3")

    def feature(self, name: str) -> FeatureDescriptor | None:
        return self.features.get(name)


@dataclass(frozen=True)
class VideoSegment:
    """Pointer to the part of a video file that belongs to one episode.

    Attributes:
        video_key: Video feature name (e.g., "observation.images.top").
        path: Dataset-relative path of the video file.
        url: Resolvable URL (or local path) of the video file.
        chunk_index: Chunk holding the video file.
        file_index: File index within the chunk.
        start: Segment start in seconds.
        end: Segment end in seconds, or None for "until the end of file".
    """

    video_key: str
    path: str
    url: str
    chunk_index: int = 0
    file_index: int = 0
    start: float = 0.0
    end: float | None = None

    @property
    def duration(self) -> float | None:
        if self.end is None:
            return None
        return self.end - self.start

    def to_dict(self) -> dict[str, Any]:
        return {
            "video_key": self.video_key,
            "path": self.path,
            "url": self.url,
            "chunk_index": self.chunk_index,
            "file_index": self.file_index,
            "start": self.start,
            "end": self.end,
        }


@dataclass(frozen=True)
class EpisodeLocation:
    """Where an episode's rows and videos live.

    For chunked datasets, ``from_index``/``to_index`` are dataset-global row
    indices into the data file at (``data_chunk_index``, ``data_file_index``).
    For legacy datasets the data file holds exactly one episode and the row
    range is left at 0.
    """

    dataset_id: str
    version: str
    episode_index: int
    data_path: str
    data_chunk_index: int = 0
    data_file_index: int = 0
    from_index: int = 0
    to_index: int = 0
    length: int = 0
    videos: tuple[VideoSegment, ...] = ()

    @property
    def first_video(self) -> VideoSegment | None:
        return self.videos[0] if self.videos else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "version": self.version,
            "episode_index": self.episode_index,
            "data_path": self.data_path,
            "data_chunk_index": self.data_chunk_index,
            "data_file_index": self.data_file_index,
            "from_index": self.from_index,
            "to_index": self.to_index,
            "length": self.length,
            "videos": [v.to_dict() for v in self.videos],
        }


@dataclass
class EpisodeRecord:
    """Per-frame numeric rows for one episode.

    Attributes:
        episode_index: Episode identifier.
        rows: Time-ordered rows mapping series name -> value; every row
            carries a ``timestamp``.
        series_names: All series names, ``timestamp`` first.
        duration: Episode duration in seconds (equals the last timestamp).
        task: Resolved task / language instruction, if any.
        ignored_columns: Features that were not turned into series.
    """

    episode_index: int
    rows: list[dict[str, float]] = field(default_factory=list)
    series_names: list[str] = field(default_factory=list)
    duration: float = 0.0
    task: str | None = None
    ignored_columns: list[str] = field(default_factory=list)

    @property
    def num_frames(self) -> int:
        return len(self.rows)

    def column(self, name: str) -> np.ndarray:
        """Return one series as a float array (missing values as 0)."""
        return np.array([row.get(name, 0.0) for row in self.rows], dtype=np.float64)

    def to_dict(self) -> dict[str, Any]:
        return {
            "episode_index": self.episode_index,
            "num_frames": self.num_frames,
            "duration": self.duration,
            "task": self.task,
            "series_names": self.series_names,
            "ignored_columns": self.ignored_columns,
        }


@dataclass
class ChartGroup:
    """Series that render together on one chart.

    Attributes:
        series: Flat series names in display order (timestamp excluded).
        rows: Per-row data restricted to ``series`` plus timestamp, with
            suffix-sharing series nested under their shared suffix.
    """

    series: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.series)

    def to_dict(self) -> dict[str, Any]:
        return {"series": self.series, "rows": self.rows}


@dataclass
class CameraInfo:
    """Video stream declared by the dataset."""

    name: str
    height: int = 0
    width: int = 0


@dataclass
class DatasetSummary:
    """Headline facts about a dataset."""

    dataset_id: str
    version: str
    fps: float
    total_episodes: int
    total_frames: int
    total_tasks: int = 0
    robot_type: str | None = None
    dataset_size_mb: float = 0.0
    cameras: list[CameraInfo] = field(default_factory=list)

    @classmethod
    def from_descriptor(cls, descriptor: DatasetDescriptor) -> "DatasetSummary":
        cameras = []
        for key in descriptor.video_keys:
            shape = descriptor.features[key].shape
            cameras.append(
                CameraInfo(
                    name=key,
                    height=shape[0] if len(shape) > 0 else 0,
                    width=shape[1] if len(shape) > 1 else 0,
                )
            )
        return cls(
            dataset_id=descriptor.dataset_id,
            version=descriptor.version,
            fps=descriptor.fps,
            total_episodes=descriptor.total_episodes,
            total_frames=descriptor.total_frames,
            total_tasks=descriptor.total_tasks,
            robot_type=descriptor.robot_type,
            dataset_size_mb=round(
                descriptor.data_files_size_in_mb + descriptor.video_files_size_in_mb, 1
            ),
            cameras=cameras,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "version": self.version,
            "fps": self.fps,
            "total_episodes": self.total_episodes,
            "total_frames": self.total_frames,
            "total_tasks": self.total_tasks,
            "robot_type": self.robot_type,
            "dataset_size_mb": self.dataset_size_mb,
            "cameras": [
                {"name": c.name, "height": c.height, "width": c.width} for c in self.cameras
            ],
        }
