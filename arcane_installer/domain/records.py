from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from arcane_installer.domain.manifest import FileEntry, normalize_file_entry, normalize_relative_path


@dataclass(frozen=True)
class BackupRecord:
    target: str
    backup: str

    def to_dict(self) -> dict[str, str]:
        return {"target": self.target, "backup": self.backup}


@dataclass(frozen=True)
class InstallationRecord:
    """The single durable record of what is currently applied to an installation root."""

    installed_at: int
    version: str
    files: tuple[FileEntry, ...] = field(default_factory=tuple)
    backups: tuple[BackupRecord, ...] = field(default_factory=tuple)

    def targets(self) -> list[str]:
        return [entry.target for entry in self.files]

    def to_dict(self) -> dict[str, Any]:
        return {
            "installed_at": self.installed_at,
            "version": self.version,
            "files": [entry.to_dict() for entry in self.files],
            "backups": [record.to_dict() for record in self.backups],
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "InstallationRecord":
        if not isinstance(payload, dict):
            raise ValueError("installation record must be an object")
        installed_at = payload.get("installed_at")
        if isinstance(installed_at, bool) or not isinstance(installed_at, (int, float)):
            raise ValueError("installed_at must be epoch seconds")
        version = payload.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ValueError("version is required")
        files_raw = payload.get("files") or []
        backups_raw = payload.get("backups") or []
        if not isinstance(files_raw, list) or not isinstance(backups_raw, list):
            raise ValueError("files and backups must be lists")

        backups: list[BackupRecord] = []
        for item in backups_raw:
            if not isinstance(item, dict):
                raise ValueError("backup entry must be an object")
            backup = item.get("backup")
            if not isinstance(backup, str) or not backup.strip():
                raise ValueError("backup entry is missing its location")
            backups.append(BackupRecord(target=normalize_relative_path(item.get("target"), "target"), backup=backup))

        return cls(
            installed_at=int(installed_at),
            version=version,
            files=tuple(normalize_file_entry(item) for item in files_raw),
            backups=tuple(backups),
        )


@dataclass
class MappingResult:
    """Outcome of applying a package's file list; every entry lands in exactly one of succeeded/failed."""

    succeeded: list[str] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)
    backups: list[BackupRecord] = field(default_factory=list)
    applied: list[FileEntry] = field(default_factory=list)
    aborted: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed
