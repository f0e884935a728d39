"""
Media Processing Layer.

This package is responsible for all media file operations: downloading item
files to disk and probing their duration.
"""

from .downloader import DownloadedItem, Downloader
from .prober import MediaProber

__all__ = ["DownloadedItem", "Downloader", "MediaProber"]
