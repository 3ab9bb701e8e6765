"""Storage layouts supported by Episcope.

Importing this package registers the locator of every layout.
"""

from episcope.formats.lerobot_v2.locator import LeRobotV2Locator
from episcope.formats.lerobot_v3.locator import LeRobotV3Locator
from episcope.formats.registry import (
    LocatorRegistry,
    detect_version,
    load_descriptor,
    read_info,
)

__all__ = [
    "LeRobotV2Locator",
    "LeRobotV3Locator",
    "LocatorRegistry",
    "detect_version",
    "load_descriptor",
    "read_info",
]
