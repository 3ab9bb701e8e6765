"""Shared plumbing for episode locators.

Handles fetching files through the source, reading parquet tables with
pyarrow, and fanning bulk loads out over a thread pool.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, TypeVar

import pyarrow.parquet as pq

from episcope.config.models import EpiscopeConfig
from episcope.core.exceptions import EpiscopeError
from episcope.core.models import DatasetDescriptor
from episcope.core.protocols import DatasetSource

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class BaseLocator:
    """Common state and helpers for layout-specific locators.

    Args:
        source: Where dataset files come from.
        descriptor: Dataset metadata.
        config: Runtime configuration.
    """

    layout_name = "base"

    def __init__(
        self,
        source: DatasetSource,
        descriptor: DatasetDescriptor,
        config: EpiscopeConfig | None = None,
    ) -> None:
        self.source = source
        self._descriptor = descriptor
        self.config = config or EpiscopeConfig()

    @property
    def descriptor(self) -> DatasetDescriptor:
        return self._descriptor

    @property
    def revision(self) -> str:
        return self._descriptor.version

    def _read_rows(
        self, path: str, columns: Iterable[str] | None = None
    ) -> list[dict[str, Any]]:
        """Fetch a parquet file and return its rows as dicts.

        Only requested columns present in the file are read.
        """
        local = self.source.fetch(path, self.revision)
        if columns is None:
            table = pq.read_table(local)
        else:
            available = set(pq.read_schema(local).names)
            wanted = [c for c in columns if c in available]
            table = pq.read_table(local, columns=wanted)
        return table.to_pylist()

    def _read_column_names(self, path: str) -> list[str]:
        local = self.source.fetch(path, self.revision)
        return list(pq.read_schema(local).names)

    def _parallel_map(
        self,
        fn: Callable[[T], R],
        items: Sequence[T],
        describe: Callable[[T], str] = str,
    ) -> list[R]:
        """Apply ``fn`` to every item on a thread pool, keeping input order.

        Items whose call raises an EpiscopeError, OSError or ValueError are
        logged and dropped.
        """
        if not items:
            return []

        results: dict[int, R] = {}
        workers = min(self.config.num_workers, len(items))
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(fn, item): i for i, item in enumerate(items)}
            for future in as_completed(futures):
                i = futures[future]
                try:
                    results[i] = future.result()
                except (EpiscopeError, OSError, ValueError) as e:
                    logger.warning("Skipping %s: %s", describe(items[i]), e)

        return [results[i] for i in sorted(results)]
