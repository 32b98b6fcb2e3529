"""Defaults and policy values shared by configuration and the adapters."""

from __future__ import annotations

from typing import Final, Literal

from arcane_installer.domain.errors import ConfigurationError

IntegrityPolicy = Literal["strict", "permissive"]
INTEGRITY_POLICIES: Final[tuple[str, ...]] = ("strict", "permissive")

DEFAULT_API_BASE: Final[str] = "https://license.ncshosting.org/api/1.2/"
MIN_FREE_BYTES: Final[int] = 50 * 1024 * 1024
INSTALLED_FILE_MODE: Final[int] = 0o644


def ensure_https(url: str) -> str:
    if not str(url).lower().startswith("https://"):
        raise ConfigurationError(f"HTTPS is required for all API calls: {url}")
    return url
