"""Configuration models for Episcope.

Defines the runtime configuration shared by the resolver, the sampler and
the CLI. Values can come from defaults, a YAML file, or EPISCOPE_*
environment variables.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_SUPPORTED_VERSIONS = ["v3.0", "v2.1", "v2.0"]
DEFAULT_DATASET_URL = "https://huggingface.co/datasets"

# Hard ceiling on the cross-episode sample regardless of configuration
MAX_SAMPLE_CAP = 500
MIN_SAMPLE_CAP = 10


@dataclass
class EpiscopeConfig:
    """Configuration for dataset resolution and cross-episode sampling.

    Attributes:
        supported_versions: Allowed schema versions, in detection preference order.
        dataset_url: Base URL used to build resolvable file URLs for Hub datasets.
        sample_cap: Maximum number of episodes in a cross-episode sample.
        max_frames_per_episode: Frames kept per sampled episode (evenly sampled).
        max_episode_points: Rows kept when loading a single episode for charts.
        cache_ttl: Seconds a cached descriptor/location stays valid.
        cache_max_entries: Maximum entries per cache.
        fetch_retries: Attempts per remote file on transient failure.
        fetch_timeout: Per-request timeout in seconds.
        retry_backoff: Initial delay between attempts in seconds (doubles each retry).
        metadata_scan_slack: Extra metadata files scanned past the expected count.
        num_workers: Threads used for analytics and parallel lookups.
        action_key: Feature holding the commanded action vector.
        state_key: Feature holding the observed state vector.
    """

    # ── Schema / source ──
    supported_versions: list[str] = field(
        default_factory=lambda: list(DEFAULT_SUPPORTED_VERSIONS)
    )
    dataset_url: str = DEFAULT_DATASET_URL

    # ── Sampling ──
    sample_cap: int = 120
    max_frames_per_episode: int = 2500
    max_episode_points: int = 4000

    # ── Caches ──
    cache_ttl: float = 300.0
    cache_max_entries: int = 64

    # ── Fetching ──
    fetch_retries: int = 3
    fetch_timeout: float = 10.0
    retry_backoff: float = 0.5
    metadata_scan_slack: int = 8

    # ── Parallelism ──
    num_workers: int = 4

    # ── Feature names ──
    action_key: str = "action"
    state_key: str = "observation.state"

    def __post_init__(self) -> None:
        self.sample_cap = min(MAX_SAMPLE_CAP, max(MIN_SAMPLE_CAP, int(self.sample_cap)))
        self.fetch_retries = max(1, int(self.fetch_retries))
        self.num_workers = max(1, int(self.num_workers))
        self.metadata_scan_slack = max(0, int(self.metadata_scan_slack))
        self.supported_versions = [_normalize_version(v) for v in self.supported_versions]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "EpiscopeConfig":
        """Build a config from EPISCOPE_* environment variables.

        Unset or invalid variables keep their defaults.

        Args:
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            EpiscopeConfig instance.
        """
        env = os.environ if environ is None else environ
        config = cls()

        versions = env.get("EPISCOPE_SUPPORTED_VERSIONS")
        if versions:
            parsed = [v.strip() for v in versions.split(",") if v.strip()]
            if parsed:
                config.supported_versions = parsed

        url = env.get("EPISCOPE_DATASET_URL")
        if url:
            config.dataset_url = url.rstrip("/")

        config.sample_cap = _env_int(env, "EPISCOPE_SAMPLE_CAP", config.sample_cap, MIN_SAMPLE_CAP)
        config.max_frames_per_episode = _env_int(
            env, "EPISCOPE_MAX_FRAMES_PER_EPISODE", config.max_frames_per_episode, 100
        )
        config.max_episode_points = _env_int(
            env, "EPISCOPE_MAX_EPISODE_POINTS", config.max_episode_points, 100
        )
        config.cache_ttl = _env_float(env, "EPISCOPE_CACHE_TTL", config.cache_ttl)
        config.cache_max_entries = _env_int(
            env, "EPISCOPE_CACHE_MAX_ENTRIES", config.cache_max_entries, 1
        )
        config.fetch_retries = _env_int(env, "EPISCOPE_FETCH_RETRIES", config.fetch_retries, 1)
        config.fetch_timeout = _env_float(env, "EPISCOPE_FETCH_TIMEOUT", config.fetch_timeout)
        config.num_workers = _env_int(env, "EPISCOPE_NUM_WORKERS", config.num_workers, 1)

        config.__post_init__()
        return config

    @classmethod
    def from_yaml(cls, path: Path | str) -> "EpiscopeConfig":
        """Load configuration from a YAML file.

        Example YAML:
            supported_versions: [v3.0, v2.1]
            sampling:
              sample_cap: 200
              max_frames_per_episode: 2000
            cache:
              ttl: 600
              max_entries: 128
            fetch:
              retries: 5
              timeout: 20

        Args:
            path: Path to YAML config file.

        Returns:
            EpiscopeConfig instance.
        """
        path = Path(path)
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EpiscopeConfig":
        """Create config from a dictionary.

        Args:
            data: Configuration dictionary (flat or grouped as in to_dict).

        Returns:
            EpiscopeConfig instance.
        """
        config = cls()

        versions = data.get("supported_versions")
        if isinstance(versions, list) and versions:
            config.supported_versions = [str(v) for v in versions]
        config.dataset_url = str(data.get("dataset_url", config.dataset_url)).rstrip("/")

        sampling = data.get("sampling", {})
        if isinstance(sampling, dict):
            config.sample_cap = sampling.get("sample_cap", config.sample_cap)
            config.max_frames_per_episode = sampling.get(
                "max_frames_per_episode", config.max_frames_per_episode
            )
            config.max_episode_points = sampling.get(
                "max_episode_points", config.max_episode_points
            )

        cache = data.get("cache", {})
        if isinstance(cache, dict):
            config.cache_ttl = float(cache.get("ttl", config.cache_ttl))
            config.cache_max_entries = int(cache.get("max_entries", config.cache_max_entries))

        fetch = data.get("fetch", {})
        if isinstance(fetch, dict):
            config.fetch_retries = fetch.get("retries", config.fetch_retries)
            config.fetch_timeout = float(fetch.get("timeout", config.fetch_timeout))
            config.retry_backoff = float(fetch.get("backoff", config.retry_backoff))
            config.metadata_scan_slack = int(
                fetch.get("metadata_scan_slack", config.metadata_scan_slack)
            )

        features = data.get("features", {})
        if isinstance(features, dict):
            config.action_key = features.get("action", config.action_key)
            config.state_key = features.get("state", config.state_key)

        config.num_workers = data.get("num_workers", config.num_workers)

        config.__post_init__()
        return config

    def to_dict(self) -> dict[str, Any]:
        """Convert config to a dictionary for serialization."""
        return {
            "supported_versions": list(self.supported_versions),
            "dataset_url": self.dataset_url,
            "sampling": {
                "sample_cap": self.sample_cap,
                "max_frames_per_episode": self.max_frames_per_episode,
                "max_episode_points": self.max_episode_points,
            },
            "cache": {
                "ttl": self.cache_ttl,
                "max_entries": self.cache_max_entries,
            },
            "fetch": {
                "retries": self.fetch_retries,
                "timeout": self.fetch_timeout,
                "backoff": self.retry_backoff,
                "metadata_scan_slack": self.metadata_scan_slack,
            },
            "features": {
                "action": self.action_key,
                "state": self.state_key,
            },
            "num_workers": self.num_workers,
        }

    def to_yaml(self, path: Path | str) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Output path.
        """
        path = Path(path)
        with open(path, "w") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


def _normalize_version(version: str) -> str:
    """Normalize "3.0" / "v3.0" to the "v3.0" tag form."""
    version = str(version).strip()
    return version if version.startswith("v") else f"v{version}"


def _env_int(env: Mapping[str, str], name: str, fallback: int, minimum: int) -> int:
    raw = env.get(name)
    if raw is None:
        return fallback
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return fallback
    return value if value >= minimum else fallback


def _env_float(env: Mapping[str, str], name: str, fallback: float) -> float:
    raw = env.get(name)
    if raw is None:
        return fallback
    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return fallback
    return value if value > 0 else fallback
