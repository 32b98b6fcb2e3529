from __future__ import annotations

import json
from pathlib import Path

from arcane_installer.domain.errors import PackageValidationError
from arcane_installer.domain.manifest import PACKAGE_MANIFEST_NAME, PackageManifest, normalize_manifest


def load_package_manifest(package_root: Path) -> PackageManifest:
    path = package_root / PACKAGE_MANIFEST_NAME
    if not path.is_file():
        raise PackageValidationError(f"package is missing {PACKAGE_MANIFEST_NAME}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise PackageValidationError(f"unreadable package manifest: {exc}") from exc
    return normalize_manifest(payload)
