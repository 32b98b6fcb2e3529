"""Package manifest model and fail-closed normalization.

A package ships ``package.manifest.json`` at its root::

    {
      "version": "1.2.0",
      "compatibility": {"panel_min": "1.11.0", "panel_max": "1.11.99"},
      "files": [{"source": "app/Foo.php", "target": "app/Foo.php", "sha256": "..."}],
      "post_install": [{"type": "artisan", "command": "view:clear"}]
    }

Normalization is pure; reading the file is done by
``infrastructure.package_reader``.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any

from arcane_installer.domain.errors import PackageValidationError

logger = logging.getLogger(__name__)

PACKAGE_MANIFEST_NAME = "package.manifest.json"

COMMAND_KIND_MAINTENANCE = "maintenance-command"
# External ``post_install[].type`` values mapped onto command kinds.
COMMAND_TYPES = {"artisan": COMMAND_KIND_MAINTENANCE}

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")
_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_VERSION_RE = re.compile(r"^v?(\d+(?:\.\d+)*)")


@dataclass(frozen=True)
class FileEntry:
    source: str
    target: str
    expected_digest: str | None = None

    def to_dict(self) -> dict[str, str]:
        out = {"source": self.source, "target": self.target}
        if self.expected_digest:
            out["sha256"] = self.expected_digest
        return out


@dataclass(frozen=True)
class Command:
    kind: str
    text: str

    def display(self) -> str:
        if self.kind == COMMAND_KIND_MAINTENANCE:
            return f"php artisan {self.text}"
        return self.text


@dataclass(frozen=True)
class Compatibility:
    panel_min: str | None = None
    panel_max: str | None = None


@dataclass(frozen=True)
class PackageManifest:
    version: str
    compatibility: Compatibility
    files: tuple[FileEntry, ...]
    post_install: tuple[Command, ...] = ()
    name: str | None = None


def parse_version(version: str) -> tuple[int, ...]:
    """Parse the numeric dotted prefix of a version (``v1.11.3-rc1`` -> ``(1, 11, 3)``)."""

    match = _VERSION_RE.match(str(version).strip())
    if not match:
        raise ValueError(f"invalid version: {version!r}")
    return tuple(int(part) for part in match.group(1).split("."))


def compare_versions(left: str, right: str) -> int:
    a = parse_version(left)
    b = parse_version(right)
    width = max(len(a), len(b))
    a = a + (0,) * (width - len(a))
    b = b + (0,) * (width - len(b))
    return (a > b) - (a < b)


def is_compatible(panel_version: str, compatibility: Compatibility) -> bool:
    """Return True when the panel version falls within the declared (inclusive) range."""

    if compatibility.panel_min and compare_versions(panel_version, compatibility.panel_min) < 0:
        return False
    if compatibility.panel_max and compare_versions(panel_version, compatibility.panel_max) > 0:
        return False
    return True


def normalize_relative_path(value: Any, field_name: str) -> str:
    """Validate a manifest path and return it in posix form.

    Absolute paths, drive prefixes and ``..`` segments are rejected so that no
    entry can address anything outside its root.
    """

    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field_name} must be a non-empty string")
    token = value.strip().replace("\\", "/")
    if token.startswith("/") or _DRIVE_RE.match(token):
        raise ValueError(f"{field_name} must be relative: {value!r}")
    parts = [part for part in token.split("/") if part not in ("", ".")]
    if not parts:
        raise ValueError(f"{field_name} must name a file: {value!r}")
    if ".." in parts:
        raise ValueError(f"{field_name} must not contain '..': {value!r}")
    return "/".join(parts)


def normalize_file_entry(raw: Any) -> FileEntry:
    if not isinstance(raw, dict):
        raise ValueError("file entry must be an object")
    source = normalize_relative_path(raw.get("source"), "source")
    target = normalize_relative_path(raw.get("target"), "target")
    digest = raw.get("sha256")
    if digest in (None, ""):
        return FileEntry(source=source, target=target)
    if not isinstance(digest, str) or not _SHA256_RE.match(digest.strip()):
        raise ValueError(f"sha256 for {target!r} must be 64 hex characters")
    return FileEntry(source=source, target=target, expected_digest=digest.strip().lower())


def _normalize_commands(raw: Any) -> tuple[Command, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ValueError("post_install must be a list")
    commands: list[Command] = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError("post_install entry must be an object")
        kind = COMMAND_TYPES.get(str(item.get("type") or ""))
        text = item.get("command")
        if kind is None:
            logger.warning("Ignoring post-install action of unsupported type %r", item.get("type"))
            continue
        if not isinstance(text, str) or not text.strip():
            continue
        commands.append(Command(kind=kind, text=text.strip()))
    return tuple(commands)


def normalize_manifest(manifest: Any) -> PackageManifest:
    """Validate and normalize a decoded manifest dict into ``PackageManifest``."""

    if not isinstance(manifest, dict):
        raise PackageValidationError("package manifest must be an object")
    try:
        version = manifest.get("version")
        if not isinstance(version, str) or not version.strip():
            raise ValueError("manifest version is required")

        compat_raw = manifest.get("compatibility") or {}
        if not isinstance(compat_raw, dict):
            raise ValueError("manifest compatibility must be an object")
        bounds: dict[str, str | None] = {}
        for key in ("panel_min", "panel_max"):
            bound = compat_raw.get(key)
            if bound in (None, ""):
                bounds[key] = None
                continue
            if not isinstance(bound, str):
                raise ValueError(f"compatibility.{key} must be a string")
            parse_version(bound)
            bounds[key] = bound.strip()

        files_raw = manifest.get("files")
        if not isinstance(files_raw, list):
            raise ValueError('package manifest missing "files" section')
        files = tuple(normalize_file_entry(item) for item in files_raw)
        seen: set[str] = set()
        for entry in files:
            if entry.target in seen:
                raise ValueError(f"duplicate target in manifest: {entry.target}")
            seen.add(entry.target)

        post_install = _normalize_commands(manifest.get("post_install"))
    except ValueError as exc:
        raise PackageValidationError(f"invalid package manifest: {exc}") from exc

    name = manifest.get("name")
    return PackageManifest(
        version=version.strip(),
        compatibility=Compatibility(panel_min=bounds["panel_min"], panel_max=bounds["panel_max"]),
        files=files,
        post_install=post_install,
        name=name.strip() if isinstance(name, str) and name.strip() else None,
    )
