"""Composition root: binds the application ports to their concrete adapters."""

from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any

from arcane_installer.application.ports import InstallerAdapters, LicenseGateway
from arcane_installer.domain.install_policy import IntegrityPolicy
from arcane_installer.infrastructure.archive import extract_archive
from arcane_installer.infrastructure.backup_store import BackupStore, referenced_runs
from arcane_installer.infrastructure.file_mapper import FileMapper
from arcane_installer.infrastructure.install_lock import hold_install_lock
from arcane_installer.infrastructure.license_client import HttpLicenseGateway
from arcane_installer.infrastructure.package_reader import load_package_manifest
from arcane_installer.infrastructure.preflight import check_preflight, read_panel_version
from arcane_installer.infrastructure.state_store import LocalStateStore


def _http_gateway(api_base: str, encryption_key: str | None) -> LicenseGateway:
    return HttpLicenseGateway(api_base, encryption_key=encryption_key)


def _file_mapper(policy: IntegrityPolicy) -> FileMapper:
    return FileMapper(policy=policy)


def _backup_store(root: Path) -> BackupStore:
    return BackupStore(root)


def build_adapters(*, license_gateway: LicenseGateway | None = None, **overrides: Any) -> InstallerAdapters:
    """Default bindings; ``license_gateway`` pins one gateway instance, other keywords replace members."""

    adapters = InstallerAdapters(
        license_gateway=_http_gateway,
        extract_archive=extract_archive,
        load_package_manifest=load_package_manifest,
        state_store=LocalStateStore(),
        backup_store=_backup_store,
        referenced_runs=referenced_runs,
        file_mapper=_file_mapper,
        hold_lock=hold_install_lock,
        check_preflight=check_preflight,
        read_panel_version=read_panel_version,
    )
    if license_gateway is not None:
        overrides["license_gateway"] = lambda _api_base, _encryption_key: license_gateway
    return replace(adapters, **overrides) if overrides else adapters
