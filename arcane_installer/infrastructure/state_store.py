from __future__ import annotations

import json
import logging
from pathlib import Path

from arcane_installer.domain.errors import RecordPersistenceError
from arcane_installer.domain.records import InstallationRecord
from arcane_installer.infrastructure.fs_atomic import atomic_write_json
from arcane_installer.infrastructure.install_paths import record_path

logger = logging.getLogger(__name__)


class LocalStateStore:
    """Durable home of the single ``InstallationRecord`` for an installation root.

    The store does no locking of its own; callers hold the installation lock
    (see ``install_lock``) around load/save pairs.
    """

    def path(self, root: Path) -> Path:
        return record_path(root)

    def load(self, root: Path) -> InstallationRecord | None:
        path = self.path(root)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            return InstallationRecord.from_dict(payload)
        except (OSError, UnicodeDecodeError, ValueError) as exc:
            # json.JSONDecodeError is a ValueError
            raise RecordPersistenceError(f"installation record unreadable: {path}: {exc}") from exc

    def save(self, root: Path, record: InstallationRecord) -> Path:
        path = self.path(root)
        try:
            atomic_write_json(path, record.to_dict())
        except OSError as exc:
            raise RecordPersistenceError(f"failed to write installation record {path}: {exc}") from exc
        logger.info("Saved installation record for version %s (%d files)", record.version, len(record.files))
        return path

    def delete(self, root: Path) -> bool:
        path = self.path(root)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as exc:
            raise RecordPersistenceError(f"failed to remove installation record {path}: {exc}") from exc
        logger.info("Removed installation record %s", path)
        return True
