from __future__ import annotations

import logging
import os
from pathlib import Path
import re
import shutil

from arcane_installer.domain.errors import PreconditionError
from arcane_installer.domain.install_policy import MIN_FREE_BYTES

logger = logging.getLogger(__name__)

PANEL_MARKERS = ("artisan", "app", "config")
PARENT_SEARCH_DEPTH = 3

_PANEL_VERSION_RE = re.compile(r"""['"]version['"]\s*=>\s*['"]([^'"]+)['"]""")


def missing_markers(root: Path) -> list[str]:
    return [marker for marker in PANEL_MARKERS if not (root / marker).exists()]


def looks_like_panel(root: Path) -> bool:
    return root.is_dir() and not missing_markers(root)


def detect_panel_root(start: Path) -> Path | None:
    """Find a panel root at ``start`` or up to three directories above it."""

    candidate = start.resolve()
    for _ in range(PARENT_SEARCH_DEPTH + 1):
        if looks_like_panel(candidate):
            return candidate
        if candidate.parent == candidate:
            break
        candidate = candidate.parent
    return None


def read_panel_version(root: Path) -> str | None:
    config = root / "config" / "app.php"
    try:
        content = config.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    match = _PANEL_VERSION_RE.search(content)
    return match.group(1).strip() if match else None


def check_preflight(root: Path, *, min_free_bytes: int = MIN_FREE_BYTES) -> None:
    """Fail before any mutation when the root is not a writable panel with room to spare."""

    if not root.is_dir():
        raise PreconditionError(f"panel path does not exist: {root}")
    missing = missing_markers(root)
    if missing:
        raise PreconditionError(f"panel path missing expected entry: {root / missing[0]}")
    if not os.access(root, os.W_OK):
        raise PreconditionError(f"panel path is not writable: {root}")
    try:
        free = shutil.disk_usage(root).free
    except OSError as exc:
        logger.warning("Could not determine free disk space for %s: %s", root, exc)
        return
    if free < min_free_bytes:
        raise PreconditionError(
            f"insufficient disk space: {free // (1024 * 1024)} MB free, {min_free_bytes // (1024 * 1024)} MB required"
        )


def require_root_privileges() -> None:
    geteuid = getattr(os, "geteuid", None)
    if geteuid is None:
        # Windows: cannot check Administrator reliably; writability is checked in preflight
        return
    if geteuid() != 0:
        raise PreconditionError("installer must be run as root to ensure proper permissions")
