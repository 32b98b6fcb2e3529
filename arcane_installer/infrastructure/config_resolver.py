"""Builds ``InstallerConfig`` from CLI arguments, environment and prompts.

Precedence per setting: explicit CLI value, then ``ARCANE_INSTALLER_*``
environment variable, then an interactive prompt (only when a prompt callable is
supplied, i.e. not ``--non-interactive``).
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Mapping

from arcane_installer.application.config import InstallerConfig
from arcane_installer.domain.errors import ConfigurationError
from arcane_installer.domain.install_policy import DEFAULT_API_BASE, INTEGRITY_POLICIES
from arcane_installer.infrastructure.preflight import detect_panel_root

ENV_PREFIX = "ARCANE_INSTALLER_"

Prompt = Callable[[str], str]


def _pick(explicit: Any, env: Mapping[str, str], name: str) -> str | None:
    if explicit not in (None, ""):
        return str(explicit).strip()
    value = env.get(ENV_PREFIX + name, "").strip()
    return value or None


def resolve_panel_path(given: str | None, *, cwd: Path, prompt: Prompt | None) -> Path:
    if given:
        return Path(given.rstrip("/\\") or given).expanduser().resolve()
    detected = detect_panel_root(cwd)
    if detected is not None:
        return detected
    if prompt is None:
        raise ConfigurationError("panel path not provided and auto-detect failed")
    answer = prompt("Enter Pterodactyl panel root path: ").strip()
    if not answer:
        raise ConfigurationError("panel path is required")
    return Path(answer.rstrip("/\\") or answer).expanduser().resolve()


def resolve_config(
    args: Any,
    *,
    env: Mapping[str, str],
    cwd: Path,
    prompt: Prompt | None = None,
    needs_license: bool = True,
) -> InstallerConfig:
    panel_path = resolve_panel_path(_pick(getattr(args, "path", None), env, "PATH"), cwd=cwd, prompt=prompt)

    license_key = _pick(getattr(args, "key", None), env, "KEY")
    if needs_license and not license_key and prompt is not None:
        license_key = prompt("Enter license key: ").strip() or None

    retention_raw = _pick(getattr(args, "backup_retention", None), env, "BACKUP_RETENTION")
    try:
        retention = int(retention_raw) if retention_raw is not None else None
    except ValueError as exc:
        raise ConfigurationError(f"invalid backup retention: {retention_raw!r}") from exc

    policy = _pick(getattr(args, "integrity_policy", None), env, "INTEGRITY_POLICY") or "strict"
    if policy not in INTEGRITY_POLICIES:
        raise ConfigurationError(f"unknown integrity policy: {policy}")

    return InstallerConfig(
        panel_path=panel_path,
        owner_id=_pick(getattr(args, "ownerid", None), env, "OWNERID") or "",
        app_name=_pick(getattr(args, "name", None), env, "NAME") or "",
        license_key=license_key,
        encryption_key=_pick(getattr(args, "enckey", None), env, "ENCKEY"),
        hwid=_pick(getattr(args, "hwid", None), env, "HWID"),
        download_token=_pick(getattr(args, "download_token", None), env, "DOWNLOAD_TOKEN"),
        api_base=_pick(getattr(args, "api_base", None), env, "API_BASE") or DEFAULT_API_BASE,
        integrity_policy=policy,  # type: ignore[arg-type]
        backup_retention=retention,
        keep_record_on_uninstall=bool(getattr(args, "keep_record", False)),
        ignore_compatibility=bool(getattr(args, "ignore_compat", False)),
    )
