"""Core infrastructure modules."""

from .global_paths import GlobalPath
from .bus import Bus, BusEvent

__all__ = ["GlobalPath", "Bus", "BusEvent"]
