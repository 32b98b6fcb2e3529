from __future__ import annotations

import os
from pathlib import Path
import stat

import pytest

from arcane_installer.domain import reason_codes
from arcane_installer.domain.errors import BackupError, PackageValidationError
from arcane_installer.domain.manifest import FileEntry
from arcane_installer.infrastructure.backup_store import BackupStore
from arcane_installer.infrastructure.file_mapper import FileMapper

from .util import sha256_bytes, write_package_dir


def _package(tmp_path: Path, files: dict[str, bytes]) -> Path:
    return write_package_dir(tmp_path / "pkg", files, {"version": "1.0.0", "files": []})


def _snapshot(root: Path) -> dict[str, bytes]:
    return {p.relative_to(root).as_posix(): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


@pytest.mark.installer
@pytest.mark.parametrize("policy", ["strict", "permissive"])
def test_apply_all_valid_entries_succeed(tmp_path: Path, panel_root: Path, policy: str):
    pkg = _package(tmp_path, {"a.txt": b"A", "b/b.txt": b"B", "c.txt": b"C"})
    files = [
        FileEntry("a.txt", "x/a.txt", sha256_bytes(b"A")),
        FileEntry("b/b.txt", "app/b.txt"),
        FileEntry("c.txt", "deep/er/c.txt", sha256_bytes(b"C")),
    ]
    result = FileMapper(policy=policy).apply(files, pkg, panel_root)

    assert result.succeeded == ["x/a.txt", "app/b.txt", "deep/er/c.txt"]
    assert result.failed == []
    assert result.backups == []
    assert result.applied == files
    assert (panel_root / "deep" / "er" / "c.txt").read_bytes() == b"C"


@pytest.mark.installer
def test_strict_policy_rejects_whole_package_before_any_write(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A", "b.txt": b"B"})
    (panel_root / "x").mkdir()
    (panel_root / "x" / "a.txt").write_bytes(b"old")
    before = _snapshot(panel_root)
    files = [
        FileEntry("a.txt", "x/a.txt"),
        FileEntry("b.txt", "x/b.txt", sha256_bytes(b"not B")),
    ]

    with pytest.raises(PackageValidationError) as excinfo:
        FileMapper(policy="strict").apply(files, pkg, panel_root)

    assert excinfo.value.failures == [("x/b.txt", reason_codes.REASON_INTEGRITY_FAILED)]
    assert _snapshot(panel_root) == before


@pytest.mark.installer
def test_strict_policy_treats_missing_source_as_validation_failure(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A"})
    files = [FileEntry("a.txt", "x/a.txt"), FileEntry("gone.txt", "x/gone.txt")]
    with pytest.raises(PackageValidationError) as excinfo:
        FileMapper().apply(files, pkg, panel_root)
    assert excinfo.value.failures == [("x/gone.txt", reason_codes.REASON_SOURCE_NOT_FOUND)]
    assert not (panel_root / "x").exists()


@pytest.mark.installer
def test_permissive_policy_skips_only_bad_files(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A", "b.txt": b"B"})
    files = [
        FileEntry("a.txt", "x/a.txt"),
        FileEntry("b.txt", "x/b.txt", sha256_bytes(b"not B")),
        FileEntry("gone.txt", "x/gone.txt"),
    ]
    result = FileMapper(policy="permissive").apply(files, pkg, panel_root)

    assert result.succeeded == ["x/a.txt"]
    assert result.failed == [
        ("x/b.txt", reason_codes.REASON_INTEGRITY_FAILED),
        ("x/gone.txt", reason_codes.REASON_SOURCE_NOT_FOUND),
    ]
    assert not (panel_root / "x" / "b.txt").exists()
    assert {t for t in result.succeeded} | {t for t, _ in result.failed} == {f.target for f in files}


@pytest.mark.installer
def test_existing_target_is_backed_up_before_overwrite(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"new"})
    (panel_root / "x").mkdir()
    (panel_root / "x" / "a.txt").write_bytes(b"old")

    result = FileMapper().apply([FileEntry("a.txt", "x/a.txt")], pkg, panel_root)

    assert [b.target for b in result.backups] == ["x/a.txt"]
    assert (panel_root / result.backups[0].backup).read_bytes() == b"old"
    assert (panel_root / "x" / "a.txt").read_bytes() == b"new"


@pytest.mark.installer
def test_applying_same_manifest_twice_backs_up_every_file(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A", "b.txt": b"B"})
    files = [FileEntry("a.txt", "x/a.txt"), FileEntry("b.txt", "y/b.txt")]
    mapper = FileMapper()

    first = mapper.apply(files, pkg, panel_root)
    after_first = _snapshot(panel_root)
    second = mapper.apply(files, pkg, panel_root)

    assert first.backups == []
    assert [b.target for b in second.backups] == ["x/a.txt", "y/b.txt"]
    assert (panel_root / "x" / "a.txt").read_bytes() == after_first["x/a.txt"] == b"A"
    assert (panel_root / "y" / "b.txt").read_bytes() == after_first["y/b.txt"] == b"B"


class _FailingBackupStore(BackupStore):
    def __init__(self, root: Path, failing: str):
        super().__init__(root)
        self.failing = failing

    def backup(self, target: str):
        if target == self.failing:
            raise BackupError(f"disk full while backing up {target}")
        return super().backup(target)


def _existing(panel_root: Path, *targets: str) -> None:
    for t in targets:
        p = panel_root / t
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(b"old")


@pytest.mark.installer
def test_strict_backup_failure_stops_run_but_keeps_earlier_files(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A", "b.txt": b"B", "c.txt": b"C"})
    _existing(panel_root, "x/a.txt", "x/b.txt", "x/c.txt")
    files = [FileEntry("a.txt", "x/a.txt"), FileEntry("b.txt", "x/b.txt"), FileEntry("c.txt", "x/c.txt")]

    result = FileMapper(policy="strict").apply(
        files, pkg, panel_root, backup_store=_FailingBackupStore(panel_root, "x/b.txt")
    )

    assert result.aborted is True
    assert result.succeeded == ["x/a.txt"]
    assert result.failed == [
        ("x/b.txt", reason_codes.REASON_BACKUP_FAILED),
        ("x/c.txt", reason_codes.REASON_NOT_ATTEMPTED),
    ]
    assert (panel_root / "x" / "a.txt").read_bytes() == b"A"
    assert (panel_root / "x" / "b.txt").read_bytes() == b"old"
    assert (panel_root / "x" / "c.txt").read_bytes() == b"old"


@pytest.mark.installer
def test_permissive_backup_failure_skips_only_that_file(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A", "b.txt": b"B"})
    _existing(panel_root, "x/a.txt", "x/b.txt")
    files = [FileEntry("a.txt", "x/a.txt"), FileEntry("b.txt", "x/b.txt")]

    result = FileMapper(policy="permissive").apply(
        files, pkg, panel_root, backup_store=_FailingBackupStore(panel_root, "x/a.txt")
    )

    assert result.aborted is False
    assert result.succeeded == ["x/b.txt"]
    assert result.failed == [("x/a.txt", reason_codes.REASON_BACKUP_FAILED)]
    assert (panel_root / "x" / "a.txt").read_bytes() == b"old"


@pytest.mark.installer
def test_before_write_hook_runs_after_validation(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"a.txt": b"A"})
    calls: list[str] = []

    FileMapper().apply([FileEntry("a.txt", "x/a.txt")], pkg, panel_root, before_write=lambda: calls.append("hook"))
    assert calls == ["hook"]

    with pytest.raises(PackageValidationError):
        FileMapper().apply([FileEntry("nope.txt", "x/n.txt")], pkg, panel_root, before_write=lambda: calls.append("bad"))
    assert calls == ["hook"]


@pytest.mark.installer
def test_unknown_policy_is_rejected():
    with pytest.raises(ValueError):
        FileMapper(policy="yolo")  # type: ignore[arg-type]


@pytest.mark.installer
@pytest.mark.skipif(os.name == "nt", reason="POSIX permission bits")
def test_overwrite_keeps_existing_mode_and_new_files_get_default(tmp_path: Path, panel_root: Path):
    pkg = _package(tmp_path, {"artisan": b"#!/usr/bin/env php\n// patched\n", "new.php": b"<?php"})
    artisan = panel_root / "artisan"
    artisan.chmod(0o755)

    result = FileMapper().apply(
        [FileEntry("artisan", "artisan"), FileEntry("new.php", "app/new.php")],
        pkg,
        panel_root,
        backup_store=BackupStore(panel_root),
    )

    assert result.succeeded == ["artisan", "app/new.php"]
    assert stat.S_IMODE(artisan.stat().st_mode) == 0o755
    assert stat.S_IMODE((panel_root / "app" / "new.php").stat().st_mode) == 0o644
