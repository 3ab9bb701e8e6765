"""Configuration module for Episcope.

Provides the runtime configuration model and its YAML / environment loaders.
"""

from episcope.config.models import EpiscopeConfig

__all__ = ["EpiscopeConfig"]
