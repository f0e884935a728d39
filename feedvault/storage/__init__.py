"""
Storage Layer.

This package handles all data persistence: the configuration file and the
SQLite content store holding parents, tasks and the archive of downloaded items.
"""

from .config_manager import ConfigManager
from .store import ContentStore

__all__ = ["ConfigManager", "ContentStore"]
