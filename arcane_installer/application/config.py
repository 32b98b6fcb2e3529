"""Installer configuration, resolved once per invocation and threaded into the orchestrator.

Resolution from CLI flags, environment and prompts lives in
``infrastructure.config_resolver``; this module only holds the validated shape.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from arcane_installer.domain.errors import ConfigurationError
from arcane_installer.domain.install_policy import (
    DEFAULT_API_BASE,
    INTEGRITY_POLICIES,
    MIN_FREE_BYTES,
    IntegrityPolicy,
    ensure_https,
)


@dataclass(frozen=True)
class InstallerConfig:
    panel_path: Path
    owner_id: str = ""
    app_name: str = ""
    license_key: str | None = None
    encryption_key: str | None = None
    hwid: str | None = None
    download_token: str | None = None
    api_base: str = DEFAULT_API_BASE
    integrity_policy: IntegrityPolicy = "strict"
    backup_retention: int | None = None
    keep_record_on_uninstall: bool = False
    ignore_compatibility: bool = False
    min_free_bytes: int = MIN_FREE_BYTES
    lock_timeout_seconds: float = 10

    def require_remote(self) -> None:
        """Validate the inputs install/update need before anything else happens."""

        if not self.owner_id or not self.app_name:
            raise ConfigurationError("missing required parameters: --ownerid and --name")
        if not self.license_key:
            raise ConfigurationError("missing license key (--key)")
        ensure_https(self.api_base)
        if self.integrity_policy not in INTEGRITY_POLICIES:
            raise ConfigurationError(f"unknown integrity policy: {self.integrity_policy}")
        if self.backup_retention is not None and self.backup_retention < 0:
            raise ConfigurationError("--backup-retention must be >= 0")
