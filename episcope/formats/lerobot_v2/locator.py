"""LeRobot v2 (legacy) episode locator.

Every episode lives in its own parquet file whose path is pure
arithmetic over the episode index, so locating needs no metadata scan.

Structure:
    dataset/
    ├── meta/
    │   ├── info.json           # fps, features, path templates
    │   ├── episodes.jsonl      # {"episode_index", "length", ...} per line
    │   └── tasks.jsonl         # {"task_index", "task"} per line
    ├── data/
    │   └── chunk-000/
    │       ├── episode_000000.parquet
    │       └── ...
    └── videos/
        └── chunk-000/
            └── observation.images.top/
                ├── episode_000000.mp4
                └── ...
"""

from __future__ import annotations

import json
import logging
from dataclasses import replace
from threading import Lock
from typing import Any

from episcope.analytics.models import EpisodeTrajectory
from episcope.core.coerce import coerce_float, coerce_int
from episcope.core.exceptions import EpisodeNotFoundError, MissingFileError
from episcope.core.models import EpisodeLocation, EpisodeRecord, VideoSegment
from episcope.formats.base import BaseLocator
from episcope.formats.columns import (
    CHUNK_PAD,
    EPISODE_PAD,
    EXCLUDED_COLUMNS_V2,
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

DEFAULT_DATA_PATH = "data/chunk-{episode_chunk:03d}/episode_{episode_index:06d}.parquet"
DEFAULT_VIDEO_PATH = (
    "videos/chunk-{episode_chunk:03d}/{video_key}/episode_{episode_index:06d}.mp4"
)
TASKS_PATH = "meta/tasks.jsonl"
EPISODES_PATH = "meta/episodes.jsonl"


@LocatorRegistry.register_locator("v2.1", "v2.0")
class LeRobotV2Locator(BaseLocator):
    """Locator for one-file-per-episode datasets.

    Usage:
        locator = LeRobotV2Locator(source, descriptor)
        location = locator.locate(3)
        record = locator.load_record(location)
    """

    layout_name = "lerobot-v2"

    def __init__(self, source, descriptor, config=None) -> None:
        super().__init__(source, descriptor, config)
        self._lock = Lock()
        self._tasks: dict[int, str] | None = None
        self._lengths: dict[int, int] | None = None

    # ── Location ──

    def _path_values(self, episode_index: int) -> dict[str, str]:
        chunk = episode_index // self.descriptor.chunks_size
        return {
            "episode_chunk": pad(chunk, CHUNK_PAD),
            "episode_index": pad(episode_index, EPISODE_PAD),
        }

    def locate(self, episode_index: int) -> EpisodeLocation:
        total = self.descriptor.total_episodes
        if episode_index < 0 or (total and episode_index >= total):
            raise EpisodeNotFoundError(episode_index, self.descriptor.dataset_id)

        values = self._path_values(episode_index)
        data_path = format_path_template(
            self.descriptor.data_path or DEFAULT_DATA_PATH, **values
        )

        videos = []
        for key in self.descriptor.video_keys:
            path = format_path_template(
                self.descriptor.video_path or DEFAULT_VIDEO_PATH, video_key=key, **values
            )
            videos.append(
                VideoSegment(
                    video_key=key,
                    path=path,
                    url=self.source.url_for(path, self.revision),
                    chunk_index=episode_index // self.descriptor.chunks_size,
                )
            )

        return EpisodeLocation(
            dataset_id=self.descriptor.dataset_id,
            version=self.descriptor.version,
            episode_index=episode_index,
            data_path=data_path,
            data_chunk_index=episode_index // self.descriptor.chunks_size,
            videos=tuple(videos),
        )

    def list_episodes(self) -> list[EpisodeLocation]:
        """Every episode location, with frame counts filled from episodes.jsonl."""
        lengths = self._episode_lengths_map()
        return [
            replace(self.locate(i), length=lengths.get(i, 0))
            for i in range(self.descriptor.total_episodes)
        ]

    # ── Records ──

    def load_record(self, location: EpisodeLocation) -> EpisodeRecord:
        columns = chartable_columns(self.descriptor, EXCLUDED_COLUMNS_V2)
        wanted = ["timestamp", "task", "task_index", *columns]

        try:
            available = self._read_column_names(location.data_path)
        except MissingFileError as e:
            raise EpisodeNotFoundError(
                location.episode_index, self.descriptor.dataset_id
            ) from e

        raw_rows = self._read_rows(
            location.data_path,
            columns=[
                c for c in available if c in wanted or c.startswith("language_instruction")
            ],
        )

        rows = []
        for raw in raw_rows:
            flat = {"timestamp": coerce_float(raw.get("timestamp"))}
            flat.update(
                flatten_row(
                    raw,
                    self.descriptor,
                    columns,
                    EXCLUDED_COLUMNS_V2,
                    scalars_use_series_name=True,
                )
            )
            rows.append(flat)

        rows = evenly_sample(rows, self.config.max_episode_points)
        series_names = ["timestamp"] + [n for names in columns.values() for n in names]

        return EpisodeRecord(
            episode_index=location.episode_index,
            rows=rows,
            series_names=series_names,
            duration=rows[-1]["timestamp"] if rows else 0.0,
            task=self._resolve_task(raw_rows),
            ignored_columns=ignored_columns(self.descriptor, min_rank=1),
        )

    def _resolve_task(self, raw_rows: list[dict[str, Any]]) -> str | None:
        task = task_from_rows(raw_rows)
        if task is not None or not raw_rows:
            return task

        if "task_index" not in raw_rows[0]:
            return None
        return self._task_table().get(coerce_int(raw_rows[0]["task_index"], default=-1))

    def _task_table(self) -> dict[int, str]:
        with self._lock:
            if self._tasks is None:
                self._tasks = {}
                for entry in self._read_jsonl(TASKS_PATH):
                    if isinstance(entry.get("task"), str):
                        self._tasks[coerce_int(entry.get("task_index"), default=-1)] = entry["task"]
            return self._tasks

    def _read_jsonl(self, path: str) -> list[dict[str, Any]]:
        """Read a JSONL metadata file; a missing file yields no entries."""
        try:
            local = self.source.fetch(path, self.revision)
        except MissingFileError:
            logger.debug("No %s in %s", path, self.descriptor.dataset_id)
            return []

        entries = []
        with open(local) as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed line %d in %s", line_number, path)
                    continue
                if isinstance(entry, dict):
                    entries.append(entry)
        return entries

    # ── Lengths ──

    def _episode_lengths_map(self) -> dict[int, int]:
        with self._lock:
            if self._lengths is None:
                self._lengths = {
                    coerce_int(entry.get("episode_index")): coerce_int(entry.get("length"))
                    for entry in self._read_jsonl(EPISODES_PATH)
                }
            return self._lengths

    def episode_lengths(self) -> list[tuple[int, int]]:
        return sorted(self._episode_lengths_map().items())

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

        def _load(location: EpisodeLocation) -> EpisodeTrajectory:
            keys = [k for k in (action_key, state_key) if k]
            columns = [
                c
                for c in self._read_column_names(location.data_path)
                if c in keys or any(c.startswith(f"{k}.") for k in keys)
            ]
            rows = self._read_rows(location.data_path, columns=columns)
            rows = evenly_sample(rows, max_frames)

            actions = to_matrix(
                [_vector_cell(row, action_key, action_feature.size) for row in rows],
                action_feature.size,
            )
            states = None
            if state_feature is not None:
                cells = [_vector_cell(row, state_key, state_feature.size) for row in rows]
                if all(cell is not None for cell in cells):
                    states = to_matrix(cells, state_feature.size)

            return EpisodeTrajectory(
                episode_index=location.episode_index,
                actions=actions,
                states=states,
                action_names=action_feature.series_names(),
                state_names=state_feature.series_names() if state_feature else [],
            )

        return self._parallel_map(
            _load, locations, describe=lambda loc: f"episode {loc.episode_index}"
        )


def _vector_cell(row: dict[str, Any], key: str, dim: int) -> list[float] | None:
    """Read a vector feature from a row.

    Falls back to per-dimension ``"<key>.<d>"`` columns written by some
    legacy exporters.
    """
    value = row.get(key)
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is not None:
        return [coerce_float(value)]
    if f"{key}.0" in row:
        return [coerce_float(row.get(f"{key}.{d}")) for d in range(dim)]
    return None
