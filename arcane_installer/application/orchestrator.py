"""Install / update / uninstall state machine.

One operation per invocation. Nothing survives between invocations except the
installation record, and every operation holds the installation-root lock from
its first read of the record until its last write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
import tempfile
import time
from typing import Callable

from arcane_installer.application.config import InstallerConfig
from arcane_installer.application.ports import InstallerAdapters, LicenseGateway
from arcane_installer.domain import reason_codes
from arcane_installer.domain.errors import (
    AppliedButUnrecordedError,
    BackupError,
    ConfigurationError,
    PreconditionError,
    RecordPersistenceError,
    RemoteError,
)
from arcane_installer.domain.manifest import (
    COMMAND_KIND_MAINTENANCE,
    Command,
    FileEntry,
    PackageManifest,
    is_compatible,
)
from arcane_installer.domain.records import BackupRecord, InstallationRecord

logger = logging.getLogger(__name__)

PACKAGE_FILE_NAME = "package.zip"
UNINSTALL_CLEANUP = (Command(kind=COMMAND_KIND_MAINTENANCE, text="cache:clear"),)


@dataclass
class OperationResult:
    operation: str
    status: str
    version: str | None = None
    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)
    post_install: list[Command] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    restored: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    purged: list[Path] = field(default_factory=list)
    bundle: Path | None = None
    record_saved: bool = False

    @property
    def exit_code(self) -> int:
        return reason_codes.EXIT_PARTIAL if self.failed else reason_codes.EXIT_OK


class Orchestrator:
    def __init__(
        self,
        config: InstallerConfig,
        adapters: InstallerAdapters,
        *,
        confirm: Callable[[str], bool] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config
        self.adapters = adapters
        self.state_store = adapters.state_store
        self.confirm = confirm
        self.clock = clock
        self._gateway: LicenseGateway | None = None

    @property
    def root(self) -> Path:
        return self.config.panel_path

    @property
    def gateway(self) -> LicenseGateway:
        if self._gateway is None:
            self._gateway = self.adapters.license_gateway(self.config.api_base, self.config.encryption_key)
        return self._gateway

    def _lock(self):
        if not self.root.is_dir():
            raise PreconditionError(f"panel path does not exist: {self.root}")
        return self.adapters.hold_lock(self.root, timeout_seconds=self.config.lock_timeout_seconds)

    # -- remote -----------------------------------------------------------

    def _start_session(self) -> str:
        auth = self.gateway.authorize(self.config.owner_id, self.config.app_name, None, self.config.encryption_key)
        if not auth.success:
            raise RemoteError(f"init failed: {auth.message or 'unknown'}")
        if not auth.session_id:
            raise RemoteError("no sessionid returned")
        return auth.session_id

    def _check_license(self, session_id: str) -> None:
        lic = self.gateway.license(session_id, self.config.license_key or "", self.config.hwid)
        if not lic.success:
            raise RemoteError(f"license validation failed: {lic.message or 'unknown'}")

    # -- shared deploy path -------------------------------------------------

    def _check_compatibility(self, manifest: PackageManifest) -> None:
        compat = manifest.compatibility
        if not compat.panel_min and not compat.panel_max:
            return
        panel_version = self.adapters.read_panel_version(self.root)
        if panel_version is None:
            logger.warning("Could not determine panel version; skipping compatibility check")
            return
        try:
            compatible = is_compatible(panel_version, compat)
        except ValueError:
            logger.warning("Unparsable panel version %r; skipping compatibility check", panel_version)
            return
        if compatible:
            logger.info("Version compatibility verified (panel %s)", panel_version)
            return
        message = (
            f"panel version {panel_version} outside supported range "
            f"{compat.panel_min or 'any'} - {compat.panel_max or 'any'}"
        )
        if self.config.ignore_compatibility or (self.confirm is not None and self.confirm(message)):
            logger.warning("Continuing despite compatibility failure: %s", message)
            return
        raise PreconditionError(message)

    def _deploy(self, operation: str, session_id: str, previous: InstallationRecord | None) -> OperationResult:
        with tempfile.TemporaryDirectory(prefix="arcane_installer_") as tmp:
            work = Path(tmp)
            archive = work / PACKAGE_FILE_NAME
            archive.write_bytes(
                self.gateway.fetch_package(
                    self.config.license_key or "",
                    self.config.owner_id,
                    self.config.app_name,
                    session_id,
                    self.config.download_token,
                    self.config.hwid,
                )
            )
            package_root = work / "pkg"
            self.adapters.extract_archive(archive, package_root)
            manifest = self.adapters.load_package_manifest(package_root)
            logger.info(
                "Package %s version %s (%d files)", manifest.name or "unknown", manifest.version, len(manifest.files)
            )
            self._check_compatibility(manifest)

            result = OperationResult(operation=operation, status="nothing-applied", version=manifest.version)
            store = self.adapters.backup_store(self.root)

            def bundle_previous() -> None:
                if previous is None:
                    return
                try:
                    result.bundle = store.archive_bundle(previous.targets())
                except OSError as exc:
                    raise PreconditionError(f"failed to archive installed files before update: {exc}") from exc

            mapping = self.adapters.file_mapper(self.config.integrity_policy).apply(
                manifest.files, package_root, self.root, backup_store=store, before_write=bundle_previous
            )

        result.succeeded = mapping.succeeded
        result.failed = mapping.failed
        result.backups = mapping.backups
        result.post_install = list(manifest.post_install)

        if not mapping.applied:
            logger.warning("No files applied; installation record left unchanged")
            return result

        record = InstallationRecord(
            installed_at=int(self.clock()),
            version=manifest.version,
            files=tuple(mapping.applied),
            backups=tuple(mapping.backups),
        )
        try:
            self.state_store.save(self.root, record)
        except RecordPersistenceError as exc:
            logger.critical("Applied %d files but could not save the installation record", len(mapping.applied))
            raise AppliedButUnrecordedError(
                f"{exc}; {len(mapping.applied)} files were applied and need manual reconciliation",
                applied=mapping.succeeded,
            ) from exc
        result.record_saved = True
        result.status = "installed" if operation == "install" else "updated"
        result.purged = self._apply_retention(record)
        return result

    def _apply_retention(self, record: InstallationRecord | None) -> list[Path]:
        keep = self.config.backup_retention
        if keep is None:
            return []
        try:
            return self.adapters.backup_store(self.root).purge(
                keep, protected_runs=self.adapters.referenced_runs(self.root, record)
            )
        except OSError as exc:
            logger.warning("Backup retention purge failed: %s", exc)
            return []

    # -- operations ---------------------------------------------------------

    def install(self) -> OperationResult:
        self.config.require_remote()
        self.adapters.check_preflight(self.root, min_free_bytes=self.config.min_free_bytes)
        logger.info("Preflight checks passed for %s", self.root)
        with self._lock():
            session_id = self._start_session()
            self._check_license(session_id)
            result = self._deploy("install", session_id, previous=None)
        logger.info("Installation finished. Version: %s (%s)", result.version, result.status)
        return result

    def update(self) -> OperationResult:
        self.config.require_remote()
        self.adapters.check_preflight(self.root, min_free_bytes=self.config.min_free_bytes)
        with self._lock():
            local = self.state_store.load(self.root)
            if local is None:
                raise PreconditionError("local installation record missing; run install first")

            auth = self.gateway.authorize(
                self.config.owner_id, self.config.app_name, local.version, self.config.encryption_key
            )
            if auth.success:
                logger.info("No update available (version %s)", local.version)
                return OperationResult(operation="update", status="up-to-date", version=local.version)
            if str(auth.message or "").strip().lower() not in reason_codes.UPDATE_AVAILABLE_MESSAGES:
                raise RemoteError(f"init failed: {auth.message or 'unknown'}")

            logger.info("Update available from %s. Downloading...", local.version)
            session_id = auth.session_id or self._start_session()
            self._check_license(session_id)
            result = self._deploy("update", session_id, previous=local)
        logger.info("Update finished. Version: %s (%s)", result.version, result.status)
        return result

    def uninstall(self) -> OperationResult:
        with self._lock():
            record = self.state_store.load(self.root)
            if record is None:
                raise PreconditionError("no local installation record found")

            result = OperationResult(
                operation="uninstall", status="uninstalled", version=record.version, post_install=list(UNINSTALL_CLEANUP)
            )
            remaining: list[FileEntry] = []
            for entry in record.files:
                path = self.root / entry.target
                if not path.exists():
                    result.warnings.append(f"not found: {entry.target}")
                    logger.warning("Not found during uninstall: %s", entry.target)
                    continue
                try:
                    path.unlink()
                except OSError as exc:
                    logger.warning("Failed to remove %s: %s", entry.target, exc)
                    result.failed.append((entry.target, reason_codes.REASON_REMOVE_FAILED))
                    remaining.append(entry)
                    continue
                result.removed.append(entry.target)
                logger.info("Removed: %s", entry.target)

            store = self.adapters.backup_store(self.root)
            pending: list[BackupRecord] = []
            for backup in record.backups:
                try:
                    restored = store.restore(backup)
                except BackupError as exc:
                    logger.error("%s", exc)
                    result.failed.append((backup.target, reason_codes.REASON_RESTORE_FAILED))
                    pending.append(backup)
                    continue
                if restored:
                    result.restored.append(backup.target)
                else:
                    result.warnings.append(f"backup missing, not restored: {backup.target}")

            self._dispose_record(record, remaining, pending)
        logger.info("Uninstall completed (%d removed, %d restored)", len(result.removed), len(result.restored))
        return result

    def _dispose_record(
        self, record: InstallationRecord, remaining: list[FileEntry], pending: list[BackupRecord]
    ) -> None:
        if self.config.keep_record_on_uninstall:
            logger.info("Keeping installation record as requested")
            return
        if not remaining and not pending:
            self.state_store.delete(self.root)
            return
        # keep only what still needs work
        self.state_store.save(
            self.root,
            InstallationRecord(
                installed_at=record.installed_at,
                version=record.version,
                files=tuple(remaining),
                backups=tuple(pending),
            ),
        )

    def purge_backups(self) -> OperationResult:
        keep = self.config.backup_retention
        if keep is None:
            raise ConfigurationError(
                "purge-backups needs --backup-retention N (0 keeps only backups the record references)"
            )
        with self._lock():
            record = self.state_store.load(self.root)
            purged = self.adapters.backup_store(self.root).purge(
                keep, protected_runs=self.adapters.referenced_runs(self.root, record)
            )
        return OperationResult(operation="purge-backups", status="purged", purged=purged)
