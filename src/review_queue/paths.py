"""Shared path utilities for review-queue-monitor."""

from __future__ import annotations

import os
from pathlib import Path


def get_default_database_path() -> Path:
    """Return the default DuckDB path following XDG data directory conventions."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base_data_dir = Path(xdg_data_home).expanduser()
    else:
        base_data_dir = Path("~/.local/share").expanduser()
    return base_data_dir / "review-queue-monitor" / "queue.duckdb"
