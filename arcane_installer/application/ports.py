"""Contracts for the orchestrator's external collaborators.

Concrete bindings are assembled by ``infrastructure.wiring.build_adapters``;
tests swap single members for in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, ContextManager, Iterable, Protocol, Sequence

from arcane_installer.domain.install_policy import IntegrityPolicy
from arcane_installer.domain.manifest import FileEntry, PackageManifest
from arcane_installer.domain.records import BackupRecord, InstallationRecord, MappingResult


@dataclass(frozen=True)
class AuthorizationResult:
    success: bool
    message: str | None = None
    session_id: str | None = None


@dataclass(frozen=True)
class LicenseResult:
    success: bool
    message: str | None = None


class LicenseGateway(Protocol):
    def authorize(
        self,
        owner_id: str,
        app_name: str,
        current_version: str | None,
        encryption_key: str | None,
    ) -> AuthorizationResult: ...

    def license(self, session_id: str, license_key: str, hwid: str | None) -> LicenseResult: ...

    def fetch_package(
        self,
        license_key: str,
        owner_id: str,
        app_name: str,
        session_id: str,
        token: str | None,
        hwid: str | None,
    ) -> bytes: ...


class ArchiveExtractor(Protocol):
    def __call__(self, archive: Path, dest: Path) -> None: ...


class StateStore(Protocol):
    def load(self, root: Path) -> InstallationRecord | None: ...
    def save(self, root: Path, record: InstallationRecord) -> Path: ...
    def delete(self, root: Path) -> bool: ...


class BackupStorePort(Protocol):
    def backup(self, target: str) -> BackupRecord: ...
    def restore(self, record: BackupRecord) -> bool: ...
    def archive_bundle(self, targets: Iterable[str]) -> Path | None: ...
    def purge(self, keep: int, *, protected_runs: Iterable[str] = ()) -> list[Path]: ...


class FileMapperPort(Protocol):
    def apply(
        self,
        files: Sequence[FileEntry],
        package_root: Path,
        installation_root: Path,
        *,
        backup_store: BackupStorePort | None = None,
        before_write: Callable[[], None] | None = None,
    ) -> MappingResult: ...


@dataclass(frozen=True)
class InstallerAdapters:
    """Everything the orchestrator touches outside the domain, bound once at startup."""

    license_gateway: Callable[[str, str | None], LicenseGateway]
    extract_archive: ArchiveExtractor
    load_package_manifest: Callable[[Path], PackageManifest]
    state_store: StateStore
    backup_store: Callable[[Path], BackupStorePort]
    referenced_runs: Callable[[Path, InstallationRecord | None], set[str]]
    file_mapper: Callable[[IntegrityPolicy], FileMapperPort]
    hold_lock: Callable[..., ContextManager[object]]
    check_preflight: Callable[..., None]
    read_panel_version: Callable[[Path], str | None]
