"""Gander utility functions."""

from __future__ import annotations

import os
import re
from pathlib import Path

from .constants import KNOWN_HOSTS_FILE_NAME, STATE_DIR_NAME


def natural_sort_key(text: str) -> list[int | str]:
    """Return a key for natural (alphanumeric) sorting.

    Splits strings into text and numeric parts for natural ordering.
    Example: ['host1', 'host2', 'host10'] sorts as 1, 2, 10 (not 1, 10, 2).
    """

    def convert(part: str) -> int | str:
        return int(part) if part.isdigit() else part.lower()

    return [convert(c) for c in re.split(r"(\d+)", text)]


def format_elapsed_time(seconds: float) -> str:
    """Format elapsed time in human-readable format.

    Args:
        seconds: Elapsed time in seconds

    Returns:
        Formatted string like "1m25s", "45s", or "1h05m30s"
    """
    total_seconds = int(seconds)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    if hours:
        return f"{hours}h{minutes:02d}m{secs:02d}s"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


def ensure_parent_dir(p: Path) -> None:
    """Create parent directory of path if it doesn't exist."""
    p.parent.mkdir(parents=True, exist_ok=True)


def default_known_hosts_path() -> Path:
    """Return default path for the host-key trust store."""
    home = Path(os.path.expanduser("~"))
    return home / STATE_DIR_NAME / KNOWN_HOSTS_FILE_NAME


def parse_key_value(item: str) -> tuple[str, str]:
    """Split a KEY=VALUE string. Raises ValueError without '='."""
    if "=" not in item:
        raise ValueError(f"expected KEY=VALUE, got {item!r}")
    k, v = item.split("=", 1)
    k = k.strip()
    if not k:
        raise ValueError(f"empty key in {item!r}")
    return k, v.strip()
