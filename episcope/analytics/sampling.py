"""Cross-episode sampling.

Picks a deterministic, evenly strided subset of a dataset's episodes and
loads their action/state trajectories through the layout's locator.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, TypeVar

from episcope.config.models import MAX_SAMPLE_CAP, EpiscopeConfig
from episcope.core.exceptions import InsufficientSampleError

if TYPE_CHECKING:
    from episcope.analytics.models import EpisodeTrajectory
    from episcope.core.protocols import EpisodeLocator

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_SAMPLED_EPISODES = 2


def stride_select(items: Sequence[T], cap: int) -> list[T]:
    """Pick up to ``cap`` items at ``round(i * (n - 1) / (cap - 1))``.

    Example:
        >>> stride_select(list(range(10)), 4)
        [0, 3, 6, 9]
    """
    n = len(items)
    cap = min(cap, MAX_SAMPLE_CAP)
    if n <= cap:
        return list(items)
    if cap <= 1:
        return [items[0]]

    picked: list[T] = []
    seen: set[int] = set()
    for i in range(cap):
        idx = int(i * (n - 1) / (cap - 1) + 0.5)
        if idx not in seen:
            seen.add(idx)
            picked.append(items[idx])
    return picked


def sample_trajectories(
    locator: EpisodeLocator,
    config: EpiscopeConfig | None = None,
) -> list[EpisodeTrajectory]:
    """Load the cross-episode sample of a dataset.

    Args:
        locator: Locator for the dataset's layout.
        config: Sample cap, per-episode frame cap and feature names.

    Returns:
        Trajectories ordered by episode index.

    Raises:
        InsufficientSampleError: If fewer than two episodes loaded.
    """
    config = config or EpiscopeConfig()
    descriptor = locator.descriptor

    locations = list(locator.list_episodes())
    selected = stride_select(locations, config.sample_cap)
    logger.info(
        "Sampling %d of %d episodes from %s",
        len(selected),
        len(locations),
        descriptor.dataset_id,
    )

    state_key = config.state_key if descriptor.feature(config.state_key) else None
    trajectories = locator.load_trajectories(
        selected,
        config.action_key,
        state_key,
        config.max_frames_per_episode,
    )
    trajectories = [t for t in trajectories if t.num_frames > 0]

    if len(trajectories) < MIN_SAMPLED_EPISODES:
        raise InsufficientSampleError(
            descriptor.dataset_id, len(trajectories), MIN_SAMPLED_EPISODES
        )
    return trajectories
