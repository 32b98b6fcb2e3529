#!/usr/bin/env python3
"""
Arcane Extension Installer - CLI
Applies, updates and reverses Arcane extension overlays on a Pterodactyl panel.

Commands:
- install       authorize, download and apply the extension package
- update        apply the latest package when the license server reports a newer version
- autoupdate    non-interactive update (cron-friendly)
- uninstall     remove installed files and restore backups using the local record
- purge-backups delete backup runs/bundles beyond --backup-retention (flag required)

NOTE:
- Post-install maintenance commands are printed, never executed.
- Only one installer may run per panel at a time (lock under storage/app/arcane_installer/.lock).
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from arcane_installer import __version__
from arcane_installer.application.config import InstallerConfig
from arcane_installer.application.orchestrator import Orchestrator, OperationResult
from arcane_installer.domain import reason_codes
from arcane_installer.domain.errors import (
    AppliedButUnrecordedError,
    InstallerError,
    PackageValidationError,
)
from arcane_installer.domain.install_policy import INTEGRITY_POLICIES
from arcane_installer.infrastructure.config_resolver import resolve_config
from arcane_installer.infrastructure.preflight import require_root_privileges
from arcane_installer.infrastructure.run_log import DEFAULT_LOG_FILE, configure_logging
from arcane_installer.infrastructure.wiring import build_adapters

COMMANDS = ("install", "update", "autoupdate", "uninstall", "purge-backups")


def eprint(*args, **kwargs):
    print(*args, file=sys.stderr, **kwargs)


def is_interactive() -> bool:
    # conservative: require both stdin and stdout to be TTY
    return sys.stdin.isatty() and sys.stdout.isatty()


def prompt(message: str) -> str:
    return input(message)


def confirm(message: str) -> bool:
    resp = input(f"⚠️  {message}. Continue anyway? [y/N] ").strip().lower()
    return resp in ("y", "yes")


def parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="arcane-installer",
        description="Install, update or uninstall Arcane extensions on a Pterodactyl panel.",
    )
    p.add_argument("command", choices=COMMANDS + ("help",), help="Operation to run.")
    p.add_argument("--path", default=None, help="Pterodactyl panel root path (default: auto-detect).")
    p.add_argument("--key", default=None, help="License key.")
    p.add_argument("--ownerid", default=None, help="Application owner id.")
    p.add_argument("--name", default=None, help="Application name.")
    p.add_argument("--enckey", default=None, help="Encryption key; enables response signature checks.")
    p.add_argument("--download-token", dest="download_token", default=None, help="Optional download token.")
    p.add_argument("--hwid", default=None, help="Optional HWID binding value.")
    p.add_argument("--api-base", dest="api_base", default=None, help="License API base URL (https only).")
    p.add_argument("--log", type=Path, default=Path(DEFAULT_LOG_FILE), help=f"Log file (default: {DEFAULT_LOG_FILE}).")
    p.add_argument("--non-interactive", dest="non_interactive", action="store_true", help="Fail instead of prompting.")
    p.add_argument(
        "--integrity-policy",
        dest="integrity_policy",
        choices=INTEGRITY_POLICIES,
        default=None,
        help="strict: reject the whole package on any bad file (default); permissive: skip bad files.",
    )
    p.add_argument(
        "--backup-retention",
        dest="backup_retention",
        type=int,
        default=None,
        help="Keep only the newest N backup runs/bundles (install/update default: keep all; required for purge-backups).",
    )
    p.add_argument("--keep-record", dest="keep_record", action="store_true", help="Uninstall: keep the local record.")
    p.add_argument("--ignore-compat", dest="ignore_compat", action="store_true", help="Install despite a panel version mismatch.")
    p.add_argument("--require-root", dest="require_root", action="store_true", help="Refuse to run unless root.")
    p.add_argument("--verbose", action="store_true", help="Mirror the run log to stderr.")
    return p.parse_args(argv)


def build_config(args: argparse.Namespace, interactive: bool) -> InstallerConfig:
    return resolve_config(
        args,
        env=os.environ,
        cwd=Path.cwd(),
        prompt=prompt if interactive else None,
        needs_license=args.command in ("install", "update", "autoupdate"),
    )


def report(result: OperationResult) -> None:
    if result.status == "up-to-date":
        print(f"✅ No update available (installed version {result.version}).")
        return

    for target in result.succeeded:
        print(f"  ✅ {target}")
    for target in result.removed:
        print(f"  🗑️  Removed: {target}")
    for target in result.restored:
        print(f"  ♻️  Restored backup: {target}")
    for target, reason in result.failed:
        eprint(f"  ❌ {target}: {reason}")
    for warning in result.warnings:
        print(f"  ⚠️  {warning}")
    if result.bundle is not None:
        print(f"🗄️  Previous files archived to: {result.bundle}")
    for path in result.purged:
        print(f"  🧹 Purged: {path}")

    if result.post_install:
        print("\nRun in panel root:")
        for command in result.post_install:
            print(f"  {command.display()}")

    print("\n" + "=" * 60)
    if result.failed:
        print(f"⚠️  {result.operation} finished with {len(result.failed)} failed file(s).")
    elif result.status == "nothing-applied":
        print(f"⚠️  {result.operation}: no files were applied.")
    else:
        version = f" (version {result.version})" if result.version else ""
        print(f"🎉 {result.operation} completed{version}.")
    print("=" * 60)


def run(args: argparse.Namespace) -> int:
    command = args.command
    interactive = not args.non_interactive and command != "autoupdate" and is_interactive()
    if args.require_root and command in ("install", "update", "autoupdate"):
        require_root_privileges()

    config = build_config(args, interactive)
    orchestrator = Orchestrator(config, build_adapters(), confirm=confirm if interactive else None)

    print(f"📁 Panel root: {config.panel_path}")
    if command == "install":
        result = orchestrator.install()
    elif command in ("update", "autoupdate"):
        result = orchestrator.update()
    elif command == "uninstall":
        result = orchestrator.uninstall()
    else:
        result = orchestrator.purge_backups()
    report(result)
    return result.exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.command == "help":
        parse_args(["--help"])

    configure_logging(args.log, verbose=args.verbose)

    print("=" * 60)
    print("Arcane Extension Installer")
    print(f"Installer Version: {__version__}")
    print(f"Mode: {args.command.upper()}")
    print("=" * 60)

    try:
        return run(args)
    except AppliedButUnrecordedError as e:
        eprint("❌ FILES WERE APPLIED BUT THE INSTALLATION RECORD COULD NOT BE SAVED.")
        eprint(f"   {e}")
        eprint("   Uninstall/update cannot see these files; reconcile the panel manually:")
        for target in e.applied:
            eprint(f"     - {target}")
        return e.exit_code
    except PackageValidationError as e:
        eprint(f"❌ Package rejected: {e}")
        for target, reason in e.failures:
            eprint(f"  - {target}: {reason}")
        eprint("   No files were changed.")
        return e.exit_code
    except InstallerError as e:
        eprint(f"❌ Error ({e.kind}): {e}")
        return e.exit_code
    except KeyboardInterrupt:
        eprint("\n❌ Interrupted; the panel may be partially updated. Check the log before retrying.")
        return reason_codes.EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
