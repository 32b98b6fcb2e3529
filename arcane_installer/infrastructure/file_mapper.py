"""Applies a package's declared (source, target) list onto an installation root.

Two integrity policies are supported:

``strict`` (default)
    Every entry is validated against the package root (source present, digest
    matching, target inside the installation root) before anything is written.
    Any failure raises ``PackageValidationError`` and the installation root is
    untouched. A backup failure while applying stops the run; files already
    applied stay applied and the rest are reported as not attempted.

``permissive``
    Each problem is recorded against its entry and mapping continues with the
    next one.

Either way every input entry ends up in exactly one of ``succeeded`` or
``failed``.
"""

from __future__ import annotations

import logging
from pathlib import Path
import stat
from typing import Callable, Sequence

from arcane_installer.domain import reason_codes
from arcane_installer.domain.errors import BackupError, PackageValidationError
from arcane_installer.domain.install_policy import INSTALLED_FILE_MODE, INTEGRITY_POLICIES, IntegrityPolicy
from arcane_installer.domain.manifest import FileEntry
from arcane_installer.domain.records import MappingResult
from arcane_installer.infrastructure import checksum
from arcane_installer.infrastructure.backup_store import BackupStore
from arcane_installer.infrastructure.fs_atomic import atomic_copy_file
from arcane_installer.infrastructure.install_paths import PathEscapeError, resolve_within

logger = logging.getLogger(__name__)


def _resolve_source(package_root: Path, entry: FileEntry) -> Path | None:
    try:
        source = resolve_within(package_root, entry.source)
    except PathEscapeError:
        return None
    return source if source.is_file() else None


class FileMapper:
    def __init__(self, *, policy: IntegrityPolicy = "strict", file_mode: int | None = INSTALLED_FILE_MODE):
        if policy not in INTEGRITY_POLICIES:
            raise ValueError(f"unknown integrity policy: {policy!r}")
        self.policy = policy
        self.file_mode = file_mode

    def validate(self, files: Sequence[FileEntry], package_root: Path, installation_root: Path) -> list[tuple[str, str]]:
        """Check every entry without writing anything; returns ``(target, reason)`` failures."""

        failures: list[tuple[str, str]] = []
        for entry in files:
            source = _resolve_source(package_root, entry)
            if source is None:
                failures.append((entry.target, reason_codes.REASON_SOURCE_NOT_FOUND))
                continue
            if not checksum.verify(source, entry.expected_digest):
                failures.append((entry.target, reason_codes.REASON_INTEGRITY_FAILED))
                continue
            try:
                resolve_within(installation_root, entry.target)
            except PathEscapeError:
                failures.append((entry.target, reason_codes.REASON_TARGET_OUTSIDE_ROOT))
        return failures

    def apply(
        self,
        files: Sequence[FileEntry],
        package_root: Path,
        installation_root: Path,
        *,
        backup_store: BackupStore | None = None,
        before_write: Callable[[], None] | None = None,
    ) -> MappingResult:
        """Map ``files`` onto ``installation_root``.

        ``before_write`` runs once after validation and before the first write,
        which is where the orchestrator takes its whole-run bundle on update.
        """

        strict = self.policy == "strict"
        if strict:
            failures = self.validate(files, package_root, installation_root)
            if failures:
                for target, reason in failures:
                    logger.error("Package validation failed for %s: %s", target, reason)
                raise PackageValidationError(
                    f"{len(failures)} of {len(files)} package files failed validation", failures
                )
        if before_write is not None:
            before_write()

        store = backup_store or BackupStore(installation_root)
        result = MappingResult()
        total = len(files)

        def fail(entry: FileEntry, reason: str) -> None:
            result.failed.append((entry.target, reason))
            logger.warning("Failed: %s (%s)", entry.target, reason)

        for processed, entry in enumerate(files, start=1):
            if result.aborted:
                fail(entry, reason_codes.REASON_NOT_ATTEMPTED)
                continue

            source = _resolve_source(package_root, entry)
            if source is None:
                fail(entry, reason_codes.REASON_SOURCE_NOT_FOUND)
                continue
            # strict mode hashed every source during validation already
            if not strict and not checksum.verify(source, entry.expected_digest):
                fail(entry, reason_codes.REASON_INTEGRITY_FAILED)
                continue
            try:
                destination = resolve_within(installation_root, entry.target)
            except PathEscapeError:
                fail(entry, reason_codes.REASON_TARGET_OUTSIDE_ROOT)
                continue

            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                logger.debug("mkdir failed for %s: %s", destination.parent, exc)
                fail(entry, reason_codes.REASON_COPY_FAILED)
                continue

            mode = self.file_mode
            if destination.exists():
                # overwrites keep the mode of the file they replace
                mode = stat.S_IMODE(destination.stat().st_mode)
                try:
                    result.backups.append(store.backup(entry.target))
                except BackupError as exc:
                    logger.error("%s", exc)
                    fail(entry, reason_codes.REASON_BACKUP_FAILED)
                    if strict:
                        result.aborted = True
                    continue

            try:
                atomic_copy_file(source, destination, mode=mode)
            except OSError as exc:
                logger.debug("copy failed for %s: %s", entry.target, exc)
                fail(entry, reason_codes.REASON_COPY_FAILED)
                continue

            result.succeeded.append(entry.target)
            result.applied.append(entry)
            logger.info("Installed: %s", entry.target)
            if processed % 10 == 0 or processed == total:
                logger.info("Progress: %d/%d files", processed, total)

        return result
