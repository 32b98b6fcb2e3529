from __future__ import annotations

import hashlib
import io
import json
import os
import subprocess
import sys
import zipfile
from pathlib import Path

from arcane_installer.application.ports import AuthorizationResult, LicenseResult

REPO_ROOT = Path(__file__).resolve().parents[1]

PANEL_VERSION = "1.11.3"


def run(cmd: list[str], *, env: dict[str, str] | None = None, cwd: Path | None = None) -> subprocess.CompletedProcess:
    e = os.environ.copy()
    if env:
        e.update(env)
    e["PYTHONPATH"] = str(REPO_ROOT) + os.pathsep + e.get("PYTHONPATH", "")
    return subprocess.run(
        cmd,
        cwd=str(cwd or REPO_ROOT),
        env=e,
        text=True,
        encoding="utf-8",
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        check=False,
    )


def run_install(args: list[str], *, env: dict[str, str] | None = None, cwd: Path | None = None) -> subprocess.CompletedProcess:
    # Always use the current interpreter (matrix python-version).
    return run([sys.executable, "-X", "utf8", str(REPO_ROOT / "install.py"), *args], env=env, cwd=cwd)


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def make_panel(root: Path, *, version: str | None = PANEL_VERSION) -> Path:
    """Create the minimal layout preflight recognizes as a Pterodactyl panel."""

    (root / "app").mkdir(parents=True, exist_ok=True)
    (root / "config").mkdir(parents=True, exist_ok=True)
    (root / "artisan").write_text("#!/usr/bin/env php\n", encoding="utf-8")
    if version is not None:
        (root / "config" / "app.php").write_text(
            f"<?php\nreturn [\n    'version' => '{version}',\n];\n", encoding="utf-8"
        )
    return root


def write_package_dir(root: Path, files: dict[str, bytes], manifest: dict) -> Path:
    root.mkdir(parents=True, exist_ok=True)
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    (root / "package.manifest.json").write_text(json.dumps(manifest), encoding="utf-8")
    return root


def build_package_zip(files: dict[str, bytes], manifest: dict) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("package.manifest.json", json.dumps(manifest))
        for rel, data in files.items():
            zf.writestr(rel, data)
    return buf.getvalue()


def manifest_for(version: str, mapping: dict[str, str], *, digests: dict[str, str] | None = None, **extra) -> dict:
    digests = digests or {}
    files = []
    for source, target in mapping.items():
        entry = {"source": source, "target": target}
        if source in digests:
            entry["sha256"] = digests[source]
        files.append(entry)
    return {"version": version, "files": files, **extra}


class FakeGateway:
    """In-memory license API: records every call, serves one package blob."""

    def __init__(
        self,
        package: bytes = b"",
        *,
        authorize_result: AuthorizationResult | None = None,
        versioned_result: AuthorizationResult | None = None,
        license_ok: bool = True,
    ):
        self.package = package
        self.authorize_result = authorize_result or AuthorizationResult(success=True, session_id="sess-1")
        self.versioned_result = versioned_result
        self.license_ok = license_ok
        self.calls: list[tuple] = []

    def authorize(self, owner_id, app_name, current_version, encryption_key):
        self.calls.append(("authorize", owner_id, app_name, current_version))
        if current_version is not None and self.versioned_result is not None:
            return self.versioned_result
        return self.authorize_result

    def license(self, session_id, license_key, hwid):
        self.calls.append(("license", session_id, license_key, hwid))
        return LicenseResult(success=self.license_ok, message=None if self.license_ok else "invalid key")

    def fetch_package(self, license_key, owner_id, app_name, session_id, token, hwid):
        self.calls.append(("fetch_package", session_id))
        return self.package

    def called(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)
