"""HuggingFace Hub integration for Episcope.

Usage:
    from episcope.hub import open_source, parse_hf_url

    ref = parse_hf_url("hf://lerobot/pusht@v2.1")
    source = open_source("lerobot/pusht")
    info_path = source.fetch("meta/info.json", revision="v2.1")
"""

from episcope.hub.source import HubSource, LocalSource, get_cache_dir, open_source
from episcope.hub.url import HFDatasetRef, build_resolve_url, is_hf_url, parse_hf_url

__all__ = [
    "HFDatasetRef",
    "HubSource",
    "LocalSource",
    "build_resolve_url",
    "get_cache_dir",
    "is_hf_url",
    "open_source",
    "parse_hf_url",
]
