"""
Storage Layer.

This package holds the in-memory job registry, the playlist archive builder,
and configuration file handling.
"""

from .archive import ArchiveBuilder
from .config_manager import ConfigManager
from .registry import JobRegistry

__all__ = ["ArchiveBuilder", "ConfigManager", "JobRegistry"]
