from __future__ import annotations

import hashlib
import hmac
from pathlib import Path


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def verify(path: Path, expected_digest: str | None) -> bool:
    """Check ``path`` against an optional sha256 hex digest.

    A missing digest means the manifest opted out of verification for this
    entry and the file is trusted as-is.
    """

    if not expected_digest:
        return True
    return hmac.compare_digest(sha256_file(path), expected_digest.strip().lower())
