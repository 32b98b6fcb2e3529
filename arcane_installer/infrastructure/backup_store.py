from __future__ import annotations

from datetime import datetime
import logging
import os
from pathlib import Path
import shutil
import stat
import tempfile
from typing import Iterable
import uuid
import zipfile

from arcane_installer.domain.errors import BackupError
from arcane_installer.domain.records import BackupRecord, InstallationRecord
from arcane_installer.infrastructure.fs_atomic import atomic_copy_file, safe_replace
from arcane_installer.infrastructure.install_paths import backups_dir, resolve_within, state_dir

logger = logging.getLogger(__name__)

BUNDLE_PREFIX = "backup_"


def now_ts() -> str:
    # ISO-ish, filesystem friendly, sorts chronologically
    return datetime.now().strftime("%Y%m%d-%H%M%S")


def new_run_id() -> str:
    return f"{now_ts()}-{uuid.uuid4().hex[:6]}"


def _file_mode(path: Path) -> int:
    return stat.S_IMODE(path.stat().st_mode)


def locate_backup(root: Path, record: BackupRecord) -> Path:
    location = Path(record.backup)
    # Records written by older installers carry absolute backup paths.
    return location if location.is_absolute() else root / location


class BackupStore:
    """Preserves files about to be overwritten in a per-run directory under the state dir.

    A run directory mirrors the relative layout of the installation root, so two
    targets that share a file name under different prefixes never collide.
    """

    def __init__(self, root: Path, *, run_id: str | None = None):
        self.root = root
        self.run_id = run_id or new_run_id()

    @property
    def run_dir(self) -> Path:
        return backups_dir(self.root) / self.run_id

    def backup(self, target: str) -> BackupRecord:
        try:
            current = resolve_within(self.root, target)
            destination = self.run_dir / target
            atomic_copy_file(current, destination, mode=_file_mode(current))
        except (OSError, ValueError) as exc:
            raise BackupError(f"failed to back up {target}: {exc}") from exc
        identifier = destination.relative_to(self.root).as_posix()
        logger.info("Backed up %s -> %s", target, identifier)
        return BackupRecord(target=target, backup=identifier)

    def locate(self, record: BackupRecord) -> Path:
        return locate_backup(self.root, record)

    def restore(self, record: BackupRecord) -> bool:
        """Copy a backup over its target.

        Returns False when the artifact is gone (logged and skipped); raises
        ``BackupError`` when the artifact exists but cannot be copied back.
        """

        source = self.locate(record)
        if not source.is_file():
            logger.warning("Backup missing for %s: %s", record.target, source)
            return False
        try:
            destination = resolve_within(self.root, record.target)
            atomic_copy_file(source, destination, mode=_file_mode(source))
        except (OSError, ValueError) as exc:
            raise BackupError(f"failed to restore {record.target} from {source}: {exc}") from exc
        logger.info("Restored backup: %s", record.target)
        return True

    def archive_bundle(self, targets: Iterable[str]) -> Path | None:
        """Zip the currently installed targets into a dated bundle under the state dir."""

        members: list[tuple[Path, str]] = []
        for target in targets:
            try:
                path = resolve_within(self.root, target)
            except ValueError:
                logger.warning("Skipping bundle member outside installation root: %s", target)
                continue
            if path.is_file():
                members.append((path, target))
        if not members:
            return None

        # run id suffix keeps two bundles taken within the same second apart
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        bundle = state_dir(self.root) / f"{BUNDLE_PREFIX}{stamp}_{self.run_id[-6:]}.zip"
        bundle.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(bundle.parent), prefix="." + bundle.name + ".", suffix=".tmp")
        os.close(fd)
        tmp = Path(tmp_name)
        try:
            with zipfile.ZipFile(tmp, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for path, arcname in members:
                    zf.write(path, arcname)
            safe_replace(tmp, bundle)
        finally:
            tmp.unlink(missing_ok=True)
        logger.info("Archived %d installed files to %s", len(members), bundle)
        return bundle

    def purge(self, keep: int, *, protected_runs: Iterable[str] = ()) -> list[Path]:
        """Delete all but the newest ``keep`` run directories and bundles.

        Runs named in ``protected_runs`` (the ones the current record points at)
        are never deleted and do not count against ``keep``.
        """

        if keep < 0:
            raise ValueError("keep must be >= 0")
        protected = set(protected_runs)
        removed: list[Path] = []

        base = backups_dir(self.root)
        runs = sorted(
            (p for p in base.iterdir() if p.is_dir() and p.name not in protected),
            key=lambda p: p.name,
            reverse=True,
        ) if base.is_dir() else []
        for run in runs[keep:]:
            shutil.rmtree(run)
            removed.append(run)

        bundles = sorted(state_dir(self.root).glob(f"{BUNDLE_PREFIX}*.zip"), key=lambda p: p.name, reverse=True)
        for bundle in bundles[keep:]:
            bundle.unlink()
            removed.append(bundle)

        for path in removed:
            logger.info("Purged backup artifact %s", path)
        return removed


def referenced_runs(root: Path, record: InstallationRecord | None) -> set[str]:
    """Run ids under the backups dir that ``record`` still needs for uninstall."""

    if record is None:
        return set()
    base = backups_dir(root)
    runs: set[str] = set()
    for item in record.backups:
        try:
            rel = locate_backup(root, item).relative_to(base)
        except ValueError:
            continue
        if rel.parts:
            runs.add(rel.parts[0])
    return runs
