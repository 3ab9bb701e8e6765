"""Export of episodes flagged for review.

Collects episode ids that the analytics single out (lowest movement,
jerkiest, trajectory outliers) together with ids supplied by the user,
and renders them as a comma-separated list, a CSV table or a ready-to-run
``lerobot-edit-dataset`` deletion command.

Usage::

    from episcope.export import flagged_episode_ids, format_episode_ids

    ids = flagged_episode_ids(report, extra=[3, 17])
    print(format_episode_ids(ids))
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Sequence
from pathlib import Path

import pandas as pd

from episcope.analytics.models import AnalyticsReport
from episcope.stats.models import EpisodeLength

logger = logging.getLogger(__name__)

FLAG_COLUMNS = ["episode_index", "reason", "score"]


def flag_table(report: AnalyticsReport, extra: Iterable[int] = ()) -> pd.DataFrame:
    """One row per (episode, reason) flagged by the report or the user.

    Reasons are ``low_movement`` (score = mean action speed), ``jerky``
    (score = normalized mean action change), ``trajectory_outlier``
    (score = distance to cluster centroid) and ``manual`` (no score).
    """
    records: list[tuple[int, str, float]] = []

    speed = report.computed("speed")
    if speed is not None:
        records.extend((ep, "low_movement", value) for ep, value in speed.low_movement_episodes)

    velocity = report.computed("velocity")
    if velocity is not None:
        records.extend((ep, "jerky", value) for ep, value in velocity.jerkiest_episodes)

    clusters = report.computed("trajectory_clusters")
    if clusters is not None:
        records.extend(
            (ep, "trajectory_outlier", clusters.outlier_scores.get(ep, math.nan))
            for ep in clusters.outliers
        )

    records.extend((int(ep), "manual", math.nan) for ep in extra)

    df = pd.DataFrame.from_records(records, columns=FLAG_COLUMNS)
    df["episode_index"] = df["episode_index"].astype(int)
    return df.sort_values(["episode_index", "reason"], kind="stable").reset_index(drop=True)


def flagged_episode_ids(report: AnalyticsReport, extra: Iterable[int] = ()) -> list[int]:
    """Sorted, de-duplicated ids flagged by the report or listed in ``extra``."""
    table = flag_table(report, extra)
    return sorted(int(ep) for ep in table["episode_index"].unique())


def episodes_outside_range(
    lengths: Sequence[EpisodeLength],
    min_seconds: float | None = None,
    max_seconds: float | None = None,
) -> list[int]:
    """Ids of episodes shorter than ``min_seconds`` or longer than ``max_seconds``."""
    lo = -math.inf if min_seconds is None else min_seconds
    hi = math.inf if max_seconds is None else max_seconds
    return sorted(e.episode_index for e in lengths if e.seconds < lo or e.seconds > hi)


def format_episode_ids(ids: Iterable[int]) -> str:
    return ", ".join(str(ep) for ep in sorted(set(ids)))


def delete_command(repo_id: str, ids: Iterable[int], new_repo_id: str | None = None) -> str:
    """Shell command that removes the given episodes with ``lerobot-edit-dataset``.

    With ``new_repo_id`` the result is saved to a new dataset and the
    original is left untouched.
    """
    lines = ["lerobot-edit-dataset", f"    --repo_id {repo_id}"]
    if new_repo_id:
        lines.append(f"    --new_repo_id {new_repo_id}")
    lines.append("    --operation.type delete_episodes")
    lines.append(f'    --operation.episode_indices "[{format_episode_ids(ids)}]"')
    return " \\\n".join(lines)


def write_flagged(
    path: str | Path, report: AnalyticsReport, extra: Iterable[int] = ()
) -> list[int]:
    """Write flagged episodes to ``path``.

    A ``.csv`` path receives the full flag table; any other path receives
    the comma-separated id list.

    Returns:
        The flagged ids.
    """
    path = Path(path)
    extra = list(extra)
    table = flag_table(report, extra)
    ids = sorted(int(ep) for ep in table["episode_index"].unique())

    if path.suffix.lower() == ".csv":
        table.to_csv(path, index=False)
    else:
        path.write_text(format_episode_ids(ids) + "\n")

    logger.info("Wrote %d flagged episodes to %s", len(ids), path)
    return ids
