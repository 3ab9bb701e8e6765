"""LeRobot v3 (chunked) episode locator.

Many episodes share one data file and one video file. Where an episode
lives is recorded in chunked episode-metadata files that must be scanned.

Structure:
    dataset/
    ├── meta/
    │   ├── info.json
    │   ├── tasks.parquet               # task text by task_index position
    │   └── episodes/
    │       └── chunk-000/
    │           ├── file-000.parquet    # one row per episode
    │           └── ...
    ├── data/
    │   └── chunk-000/
    │       └── file-000.parquet        # rows of many episodes, global "index"
    └── videos/
        └── observation.images.top/
            └── chunk-000/
                └── file-000.mp4        # episodes at [from_timestamp, to_timestamp)
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from threading import Lock
from typing import Any

import pyarrow.parquet as pq

from episcope.analytics.models import EpisodeTrajectory
from episcope.core.coerce import coerce_float, coerce_int
from episcope.core.exceptions import EpisodeNotFoundError, MissingFileError
from episcope.core.models import EpisodeLocation, EpisodeRecord, VideoSegment
from episcope.formats.base import BaseLocator
from episcope.formats.columns import (
    CHUNK_PAD,
    EXCLUDED_COLUMNS_V3,
    FILE_PAD,
    chartable_columns,
    evenly_sample,
    flatten_row,
    format_path_template,
    ignored_columns,
    pad,
    task_from_rows,
    to_matrix,
)
from episcope.formats.registry import LocatorRegistry

logger = logging.getLogger(__name__)

DEFAULT_DATA_PATH = "data/chunk-{chunk_index:03d}/file-{file_index:03d}.parquet"
DEFAULT_VIDEO_PATH = "videos/{video_key}/chunk-{chunk_index:03d}/file-{file_index:03d}.mp4"
EPISODES_META_PATH = "meta/episodes/chunk-{chunk_index:03d}/file-{file_index:03d}.parquet"
TASKS_PATH = "meta/tasks.parquet"

# Video segments without an end timestamp are assumed to span this long
DEFAULT_VIDEO_END = 30.0

_NUMERIC_DTYPES = ("float32", "float64", "int32", "int64", "bool")

# Positional layout of metadata rows written with numeric column names
_POSITIONAL_FIELDS = (
    "episode_index",
    "data/chunk_index",
    "data/file_index",
    "dataset_from_index",
    "dataset_to_index",
    "video_chunk_index",
    "video_file_index",
    "video_from_timestamp",
    "video_to_timestamp",
    "length",
)


def episodes_meta_path(file_index: int, chunk_index: int = 0) -> str:
    return format_path_template(
        EPISODES_META_PATH,
        chunk_index=pad(chunk_index, CHUNK_PAD),
        file_index=pad(file_index, FILE_PAD),
    )


def _normalize_metadata_row(row: dict[str, Any]) -> dict[str, Any]:
    """Map positional ``"0"``..``"9"`` keys onto named metadata fields."""
    if "episode_index" in row or "0" not in row:
        return row

    named = {field: row.get(str(i)) for i, field in enumerate(_POSITIONAL_FIELDS)}
    if named["length"] is None:
        named["length"] = DEFAULT_VIDEO_END
    return named


@LocatorRegistry.register_locator("v3.0")
class LeRobotV3Locator(BaseLocator):
    """Locator for chunked multi-episode datasets.

    Usage:
        locator = LeRobotV3Locator(source, descriptor)
        location = locator.locate(42)
        record = locator.load_record(location)
    """

    layout_name = "lerobot-v3"

    def __init__(self, source, descriptor, config=None) -> None:
        super().__init__(source, descriptor, config)
        self._lock = Lock()
        self._meta_files: dict[int, list[dict[str, Any]] | None] = {}
        self._tasks: list[str | None] | None = None

    @property
    def scan_limit(self) -> int:
        """Maximum number of metadata files scanned before giving up."""
        expected = math.ceil(self.descriptor.total_episodes / self.descriptor.chunks_size)
        return max(1, expected) + self.config.metadata_scan_slack

    # ── Metadata scan ──

    def _metadata_rows(self, file_index: int) -> list[dict[str, Any]] | None:
        """Rows of one metadata file, or None when the file does not exist."""
        with self._lock:
            if file_index in self._meta_files:
                return self._meta_files[file_index]

        path = episodes_meta_path(file_index)
        try:
            columns = [
                c
                for c in self._read_column_names(path)
                if c in ("episode_index", "length", "dataset_from_index", "dataset_to_index")
                or c.startswith(("data/", "videos/"))
                or c.isdigit()
            ]
            rows: list[dict[str, Any]] | None = [
                _normalize_metadata_row(row) for row in self._read_rows(path, columns)
            ]
        except MissingFileError:
            rows = None

        logger.debug("Scanned %s: %s rows", path, "missing" if rows is None else len(rows))
        with self._lock:
            self._meta_files[file_index] = rows
        return rows

    def locate(self, episode_index: int) -> EpisodeLocation:
        searched = episodes_meta_path(0)
        for file_index in range(self.scan_limit):
            searched = episodes_meta_path(file_index)
            rows = self._metadata_rows(file_index)
            if rows is None:
                break
            for row in rows:
                if coerce_int(row.get("episode_index"), default=-1) == episode_index:
                    return self._location_from_row(row)

        raise EpisodeNotFoundError(
            episode_index,
            self.descriptor.dataset_id,
            searched_file=searched.rsplit("/", 1)[-1],
        )

    def list_episodes(self) -> list[EpisodeLocation]:
        locations: dict[int, EpisodeLocation] = {}
        for file_index in range(self.scan_limit):
            rows = self._metadata_rows(file_index)
            if rows is None:
                break
            for row in rows:
                location = self._location_from_row(row)
                locations.setdefault(location.episode_index, location)
        return [locations[i] for i in sorted(locations)]

    def episode_lengths(self) -> list[tuple[int, int]]:
        return [(loc.episode_index, loc.length) for loc in self.list_episodes()]

    def _location_from_row(self, row: dict[str, Any]) -> EpisodeLocation:
        episode_index = coerce_int(row.get("episode_index"))
        chunk = coerce_int(row.get("data/chunk_index"))
        file = coerce_int(row.get("data/file_index"))
        data_path = format_path_template(
            self.descriptor.data_path or DEFAULT_DATA_PATH,
            chunk_index=pad(chunk, CHUNK_PAD),
            file_index=pad(file, FILE_PAD),
        )

        videos = tuple(self._video_segment(key, row) for key in self.descriptor.video_keys)

        return EpisodeLocation(
            dataset_id=self.descriptor.dataset_id,
            version=self.descriptor.version,
            episode_index=episode_index,
            data_path=data_path,
            data_chunk_index=chunk,
            data_file_index=file,
            from_index=coerce_int(row.get("dataset_from_index")),
            to_index=coerce_int(row.get("dataset_to_index")),
            length=coerce_int(row.get("length")),
            videos=videos,
        )

    def _video_segment(self, video_key: str, row: dict[str, Any]) -> VideoSegment:
        def field(name: str) -> Any:
            value = row.get(f"videos/{video_key}/{name}")
            return value if value is not None else row.get(f"video_{name}")

        chunk = coerce_int(field("chunk_index"))
        file = coerce_int(field("file_index"))
        path = format_path_template(
            self.descriptor.video_path or DEFAULT_VIDEO_PATH,
            video_key=video_key,
            chunk_index=pad(chunk, CHUNK_PAD),
            file_index=pad(file, FILE_PAD),
        )
        return VideoSegment(
            video_key=video_key,
            path=path,
            url=self.source.url_for(path, self.revision),
            chunk_index=chunk,
            file_index=file,
            start=coerce_float(field("from_timestamp")),
            end=coerce_float(field("to_timestamp")) or DEFAULT_VIDEO_END,
        )

    # ── Records ──

    def _record_columns(self, available: list[str]) -> list[str]:
        wanted = {"index", "timestamp", "task", "task_index"}
        wanted.update(
            name
            for name, feature in self.descriptor.features.items()
            if feature.dtype in _NUMERIC_DTYPES and len(feature.shape) <= 1
        )
        return [c for c in available if c in wanted or c.startswith("language_instruction")]

    def _slice_rows(
        self, rows: list[dict[str, Any]], location: EpisodeLocation
    ) -> list[dict[str, Any]]:
        """Translate the global row range into this file's local rows."""
        if not rows or "index" not in rows[0]:
            return rows

        from_index = location.from_index
        to_index = location.to_index
        if to_index <= from_index:
            to_index = from_index + 1

        file_start = coerce_int(rows[0]["index"])
        local_from = max(0, from_index - file_start)
        local_to = min(len(rows), max(local_from, to_index - file_start))
        return rows[local_from:local_to]

    def episode_duration(self, location: EpisodeLocation) -> float:
        """Episode length in seconds: frames / fps, else the video span."""
        if location.length:
            return location.length / self.descriptor.fps
        video = location.first_video
        if video is None:
            return DEFAULT_VIDEO_END
        return (video.end or DEFAULT_VIDEO_END) - video.start

    def load_record(self, location: EpisodeLocation) -> EpisodeRecord:
        try:
            available = self._read_column_names(location.data_path)
        except MissingFileError as e:
            raise EpisodeNotFoundError(
                location.episode_index, self.descriptor.dataset_id
            ) from e

        raw_rows = self._slice_rows(
            self._read_rows(location.data_path, self._record_columns(available)), location
        )
        raw_rows = evenly_sample(raw_rows, self.config.max_episode_points)

        columns = chartable_columns(self.descriptor, EXCLUDED_COLUMNS_V3)
        duration = self.episode_duration(location)
        denominator = max(len(raw_rows) - 1, 1)

        rows = []
        series_names = ["timestamp"]
        seen = {"timestamp"}
        for i, raw in enumerate(raw_rows):
            flat = {"timestamp": i / denominator * duration}
            flat.update(flatten_row(raw, self.descriptor, columns, EXCLUDED_COLUMNS_V3))
            for name in flat:
                if name not in seen:
                    seen.add(name)
                    series_names.append(name)
            rows.append(flat)

        ignored = ignored_columns(self.descriptor, min_rank=2)
        ignored += [c for c in EXCLUDED_COLUMNS_V3 if c in self.descriptor.features]

        return EpisodeRecord(
            episode_index=location.episode_index,
            rows=rows,
            series_names=series_names,
            duration=duration,
            task=self._resolve_task(raw_rows),
            ignored_columns=ignored,
        )

    def _resolve_task(self, raw_rows: list[dict[str, Any]]) -> str | None:
        task = task_from_rows(raw_rows)
        if task is not None or not raw_rows:
            return task

        task_index = coerce_int(raw_rows[0].get("task_index"), default=-1)
        tasks = self._task_table()
        if not 0 <= task_index < len(tasks):
            return None
        return tasks[task_index]

    def _task_table(self) -> list[str | None]:
        """Task text by position in tasks.parquet.

        Written from pandas, the text is the frame's index or an
        ``__index_level_0__`` column; otherwise it is the ``task`` column.
        """
        with self._lock:
            if self._tasks is not None:
                return self._tasks
        try:
            local = self.source.fetch(TASKS_PATH, self.revision)
        except MissingFileError:
            logger.debug("No %s in %s", TASKS_PATH, self.descriptor.dataset_id)
            values = []
        else:
            df = pq.read_table(local).to_pandas()
            if df.index.dtype == object:
                values = list(df.index)
            elif "__index_level_0__" in df.columns:
                values = df["__index_level_0__"].tolist()
            elif "task" in df.columns:
                values = df["task"].tolist()
            else:
                values = []
        tasks = [v if isinstance(v, str) else None for v in values]
        with self._lock:
            self._tasks = tasks
        return tasks

    # ── Trajectories ──

    def load_trajectories(
        self,
        locations: list[EpisodeLocation],
        action_key: str,
        state_key: str | None,
        max_frames: int,
    ) -> list[EpisodeTrajectory]:
        action_feature = self.descriptor.feature(action_key)
        if action_feature is None:
            return []
        state_feature = self.descriptor.feature(state_key) if state_key else None

        by_file: dict[str, list[EpisodeLocation]] = defaultdict(list)
        for location in locations:
            by_file[location.data_path].append(location)

        def _load_file(item: tuple[str, list[EpisodeLocation]]) -> list[EpisodeTrajectory]:
            path, group = item
            rows = self._read_rows(path, ["index", action_key, state_key or action_key])

            trajectories = []
            for location in group:
                episode_rows = evenly_sample(self._slice_rows(rows, location), max_frames)
                actions = to_matrix(
                    [row.get(action_key) for row in episode_rows], action_feature.size
                )
                states = None
                if state_feature is not None:
                    cells = [row.get(state_key) for row in episode_rows]
                    if cells and all(cell is not None for cell in cells):
                        states = to_matrix(cells, state_feature.size)

                trajectories.append(
                    EpisodeTrajectory(
                        episode_index=location.episode_index,
                        actions=actions,
                        states=states,
                        action_names=action_feature.series_names(),
                        state_names=state_feature.series_names() if state_feature else [],
                    )
                )
            return trajectories

        loaded = self._parallel_map(
            _load_file, list(by_file.items()), describe=lambda item: item[0]
        )
        trajectories = [t for group in loaded for t in group]
        return sorted(trajectories, key=lambda t: t.episode_index)
