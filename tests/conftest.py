"""Pytest configuration and fixtures for Episcope tests.

The dataset fixtures write small but complete LeRobot datasets to disk:

- ``v2_dataset``: v2.1 layout, 3 episodes x 10 frames at 10 fps, one
  parquet file per episode, JSONL metadata.
- ``v3_dataset``: v3.0 layout, 4 episodes x 10 frames at 10 fps, two
  episodes per data file and per episode-metadata file.
"""

import json
from pathlib import Path

import numpy as np
import pyarrow as pa
import pyarrow.parquet as pq
import pytest

from episcope.analytics.models import EpisodeTrajectory

FPS = 10
FRAMES = 10
JOINTS = ["shoulder", "gripper"]
VIDEO_KEY = "observation.images.top"
TASKS = ["Push the block", "Stack cups"]


def _features() -> dict:
    return {
        "action": {"dtype": "float32", "shape": [2], "names": {"motors": JOINTS}},
        "observation.state": {"dtype": "float32", "shape": [2], "names": JOINTS},
        VIDEO_KEY: {
            "dtype": "video",
            "shape": [96, 128, 3],
            "names": ["height", "width", "channels"],
        },
        "timestamp": {"dtype": "float32", "shape": [1]},
        "frame_index": {"dtype": "int64", "shape": [1]},
        "episode_index": {"dtype": "int64", "shape": [1]},
        "index": {"dtype": "int64", "shape": [1]},
        "task_index": {"dtype": "int64", "shape": [1]},
    }


def episode_actions(episode_index: int, frames: int = FRAMES) -> np.ndarray:
    """Deterministic (frames, 2) action matrix for an episode."""
    t = np.arange(frames, dtype=np.float64)
    shoulder = (episode_index + 1) * 0.1 * t
    gripper = np.where(t < frames // 2, 0.0, 1.0)
    return np.column_stack([shoulder, gripper]).astype(np.float32)


def _episode_table(episode_index: int, first_index: int, task_index: int) -> pa.Table:
    actions = episode_actions(episode_index)
    states = np.vstack([actions[:1], actions[:-1]])
    return pa.table(
        {
            "action": pa.array(actions.tolist(), type=pa.list_(pa.float32())),
            "observation.state": pa.array(states.tolist(), type=pa.list_(pa.float32())),
            "timestamp": pa.array(np.arange(FRAMES) / FPS, type=pa.float32()),
            "frame_index": pa.array(np.arange(FRAMES), type=pa.int64()),
            "episode_index": pa.array([episode_index] * FRAMES, type=pa.int64()),
            "index": pa.array(np.arange(first_index, first_index + FRAMES), type=pa.int64()),
            "task_index": pa.array([task_index] * FRAMES, type=pa.int64()),
        }
    )


def _write_info(meta_dir: Path, info: dict) -> None:
    meta_dir.mkdir(parents=True, exist_ok=True)
    with open(meta_dir / "info.json", "w") as f:
        json.dump(info, f)


@pytest.fixture
def v2_dataset(tmp_path: Path) -> Path:
    """Create a LeRobot v2.1 dataset with 3 episodes."""
    root = tmp_path / "v2_dataset"
    num_episodes = 3

    _write_info(
        root / "meta",
        {
            "codebase_version": "v2.1",
            "robot_type": "so100",
            "fps": FPS,
            "total_episodes": num_episodes,
            "total_frames": num_episodes * FRAMES,
            "total_tasks": 1,
            "chunks_size": 1000,
            "data_path": "data/chunk-{episode_chunk:03d}/episode_{episode_index:06d}.parquet",
            "video_path": (
                "videos/chunk-{episode_chunk:03d}/{video_key}/episode_{episode_index:06d}.mp4"
            ),
            "features": _features(),
        },
    )

    data_dir = root / "data" / "chunk-000"
    data_dir.mkdir(parents=True)
    for ep in range(num_episodes):
        table = _episode_table(ep, ep * FRAMES, task_index=0)
        pq.write_table(table, data_dir / f"episode_{ep:06d}.parquet")

    with open(root / "meta" / "episodes.jsonl", "w") as f:
        for ep in range(num_episodes):
            f.write(json.dumps({"episode_index": ep, "tasks": [TASKS[0]], "length": FRAMES}))
            f.write("\n")

    with open(root / "meta" / "tasks.jsonl", "w") as f:
        f.write(json.dumps({"task_index": 0, "task": TASKS[0]}) + "\n")

    return root


@pytest.fixture
def v3_dataset(tmp_path: Path) -> Path:
    """Create a LeRobot v3.0 dataset with 4 episodes in two data files."""
    root = tmp_path / "v3_dataset"
    num_episodes = 4

    _write_info(
        root / "meta",
        {
            "codebase_version": "v3.0",
            "robot_type": "koch",
            "fps": FPS,
            "total_episodes": num_episodes,
            "total_frames": num_episodes * FRAMES,
            "total_tasks": len(TASKS),
            "chunks_size": 1000,
            "data_files_size_in_mb": 1.24,
            "video_files_size_in_mb": 10.0,
            "data_path": "data/chunk-{chunk_index:03d}/file-{file_index:03d}.parquet",
            "video_path": "videos/{video_key}/chunk-{chunk_index:03d}/file-{file_index:03d}.mp4",
            "features": _features(),
        },
    )

    data_dir = root / "data" / "chunk-000"
    data_dir.mkdir(parents=True)
    # Two episodes per data file; the global "index" keeps counting across files
    for file_index, episodes in enumerate([(0, 1), (2, 3)]):
        tables = [
            _episode_table(ep, ep * FRAMES, task_index=ep % len(TASKS)) for ep in episodes
        ]
        pq.write_table(pa.concat_tables(tables), data_dir / f"file-{file_index:03d}.parquet")

    meta_dir = root / "meta" / "episodes" / "chunk-000"
    meta_dir.mkdir(parents=True)
    prefix = f"videos/{VIDEO_KEY}"
    for file_index, episodes in enumerate([(0, 1), (2, 3)]):
        rows = [
            {
                "episode_index": ep,
                "data/chunk_index": 0,
                "data/file_index": file_index,
                "dataset_from_index": ep * FRAMES,
                "dataset_to_index": (ep + 1) * FRAMES,
                "length": FRAMES,
                f"{prefix}/chunk_index": 0,
                f"{prefix}/file_index": 0,
                f"{prefix}/from_timestamp": float(ep),
                f"{prefix}/to_timestamp": float(ep + 1),
            }
            for ep in episodes
        ]
        pq.write_table(pa.Table.from_pylist(rows), meta_dir / f"file-{file_index:03d}.parquet")

    pq.write_table(
        pa.table({"task_index": list(range(len(TASKS))), "task": TASKS}),
        root / "meta" / "tasks.parquet",
    )

    return root


# ── Synthetic trajectories ───────────────────────────────────────


def _make_trajectory(
    episode_index: int,
    actions: np.ndarray,
    states: np.ndarray | None = None,
    names: list[str] | None = None,
) -> EpisodeTrajectory:
    actions = np.asarray(actions, dtype=np.float64)
    if actions.ndim == 1:
        actions = actions[:, None]
    names = names or [f"action | j{d}" for d in range(actions.shape[1])]
    state_names = [n.replace("action", "observation.state") for n in names]
    return EpisodeTrajectory(
        episode_index=episode_index,
        actions=actions,
        states=states,
        action_names=names,
        state_names=state_names if states is not None else [],
    )


@pytest.fixture
def random_walk_trajectories() -> list[EpisodeTrajectory]:
    """Twelve smooth 2-D random-walk episodes of varying length."""
    rng = np.random.RandomState(42)
    trajectories = []
    for ep in range(12):
        T = 120 + 10 * ep
        actions = np.cumsum(rng.normal(0, 0.05, size=(T, 2)), axis=0)
        trajectories.append(_make_trajectory(ep, actions))
    return trajectories


@pytest.fixture
def make_trajectory():
    """Factory building an EpisodeTrajectory from raw arrays."""
    return _make_trajectory


@pytest.fixture
def expected_actions():
    """The action matrix written for an episode of the dataset fixtures."""
    return episode_actions
