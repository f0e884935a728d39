"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime
from typing import Optional


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_timestamp(ts: Optional[int]) -> str:
    """Formats a unix timestamp for tables, or a dash when never set."""
    if not ts:
        return "—"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M")


def shorten(text: str, width: int = 20) -> str:
    """Cuts a description down for one-line progress messages."""
    text = " ".join(text.split())
    if len(text) <= width:
        return text
    return text[:width].rstrip() + "…"
