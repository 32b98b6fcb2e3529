"""Well-known locations inside an installation root.

Install, update and uninstall must agree on these, so they are derived from the
root alone and never configured separately.
"""

from __future__ import annotations

import os
from pathlib import Path

STATE_DIR_PARTS = ("storage", "app", "arcane_installer")
RECORD_NAME = "manifest.json"
BACKUPS_DIR_NAME = "backups"
LOCK_DIR_NAME = ".lock"


class PathEscapeError(ValueError):
    pass


def state_dir(root: Path) -> Path:
    return root.joinpath(*STATE_DIR_PARTS)


def record_path(root: Path) -> Path:
    return state_dir(root) / RECORD_NAME


def backups_dir(root: Path) -> Path:
    return state_dir(root) / BACKUPS_DIR_NAME


def lock_dir(root: Path) -> Path:
    return state_dir(root) / LOCK_DIR_NAME


def resolve_within(base: Path, rel: str) -> Path:
    """Join a relative manifest path onto ``base`` and refuse anything that lands outside it."""

    base_resolved = Path(os.path.realpath(base))
    candidate = Path(os.path.realpath(base_resolved / rel))
    if candidate != base_resolved and base_resolved not in candidate.parents:
        raise PathEscapeError(f"refusing path outside {base}: {rel}")
    return candidate
