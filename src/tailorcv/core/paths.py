"""Project path resolution for the tailorcv data directory."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=1)
def find_project_root() -> Path:
    """Walk up from this source file to the directory holding pyproject.toml."""
    for parent in Path(__file__).resolve().parents:
        if (parent / "pyproject.toml").exists():
            return parent
    # src/tailorcv/core/paths.py -> 3 levels up
    return Path(__file__).resolve().parents[3]


def get_data_dir() -> Path:
    """Return ``data/`` under the project root (not created)."""
    return find_project_root() / "data"
