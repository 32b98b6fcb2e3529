from __future__ import annotations

import logging
from pathlib import Path
import tarfile
import zipfile

from arcane_installer.domain.errors import PackageValidationError
from arcane_installer.infrastructure.install_paths import PathEscapeError, resolve_within

logger = logging.getLogger(__name__)


def _check_members(dest: Path, names: list[str]) -> None:
    for name in names:
        try:
            resolve_within(dest, name)
        except PathEscapeError as exc:
            raise PackageValidationError(f"archive member escapes extraction dir: {name}") from exc


def _extract_zip(archive: Path, dest: Path) -> None:
    with zipfile.ZipFile(archive, "r") as zf:
        _check_members(dest, zf.namelist())
        zf.extractall(dest)


def _extract_tar(archive: Path, dest: Path) -> None:
    with tarfile.open(archive, "r:*") as tf:
        members = tf.getmembers()
        _check_members(dest, [m.name for m in members])
        for member in members:
            if member.issym() or member.islnk() or member.isdev():
                raise PackageValidationError(f"archive member is not a regular file or directory: {member.name}")
        if hasattr(tarfile, "data_filter"):
            tf.extractall(dest, filter="data")
        else:
            tf.extractall(dest)


def extract_archive(archive: Path, dest: Path) -> None:
    """Extract a .zip or .tar(.gz) package into ``dest``, refusing members that escape it."""

    dest.mkdir(parents=True, exist_ok=True)
    try:
        if zipfile.is_zipfile(archive):
            _extract_zip(archive, dest)
        elif tarfile.is_tarfile(archive):
            _extract_tar(archive, dest)
        else:
            raise PackageValidationError(f"unsupported package format: {archive.name}")
    except (zipfile.BadZipFile, tarfile.TarError, OSError) as exc:
        raise PackageValidationError(f"failed to extract {archive.name}: {exc}") from exc
    logger.info("Extracted %s to %s", archive.name, dest)
