"""
Utilities for building the on-disk layout of downloaded items.
"""

from pathlib import Path

from pathvalidate import sanitize_filename


def create_dir(directory_path: Path) -> None:
    """Creates a directory if it does not already exist."""
    directory_path.mkdir(parents=True, exist_ok=True)


def parent_dir(download_root: Path, external_id: str) -> Path:
    """Directory holding every item of one parent account."""
    return download_root / (sanitize_filename(external_id, platform="auto") or "unknown")


def item_folder_name(item_id: str) -> str:
    """Folder name for one item; item ids are used verbatim when safe."""
    return sanitize_filename(item_id, platform="auto") or "item"
