"""Exclusive lease on an installation root for the duration of one operation."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import time
from typing import Iterator
import uuid

from arcane_installer.domain.errors import PreconditionError
from arcane_installer.infrastructure.fs_atomic import atomic_write_text
from arcane_installer.infrastructure.install_paths import lock_dir

logger = logging.getLogger(__name__)

OWNER_FILE = "owner.json"
OWNERLESS_GRACE_SECONDS = 5


@dataclass(frozen=True)
class InstallLock:
    lock_dir: Path
    lock_id: str

    def release(self) -> None:
        owner = self.lock_dir / OWNER_FILE
        try:
            payload = json.loads(owner.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            payload = {}
        if payload and payload.get("lock_id") != self.lock_id:
            # someone broke our lease as stale and holds it now
            logger.warning("Lock %s no longer owned by this process; leaving it in place", self.lock_dir)
            return
        owner.unlink(missing_ok=True)
        if self.lock_dir.exists():
            self.lock_dir.rmdir()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_stale(owner: Path, ttl_seconds: int) -> bool:
    if not owner.exists():
        # the holder may be between mkdir and writing owner.json
        try:
            age = time.time() - owner.parent.stat().st_mtime
        except OSError:
            return True
        return age > OWNERLESS_GRACE_SECONDS
    try:
        payload = json.loads(owner.read_text(encoding="utf-8"))
        acquired = datetime.fromisoformat(str(payload["acquired_at"]).replace("Z", "+00:00"))
    except (OSError, ValueError, KeyError, TypeError):
        return True
    if acquired.tzinfo is None:
        acquired = acquired.replace(tzinfo=timezone.utc)
    return (_utc_now() - acquired).total_seconds() > ttl_seconds


def acquire_install_lock(
    root: Path,
    *,
    ttl_seconds: int = 3600,
    timeout_seconds: float = 10,
    poll_interval_seconds: float = 0.1,
) -> InstallLock:
    if not root.is_dir():
        raise PreconditionError(f"panel path does not exist: {root}")
    target = lock_dir(root)
    # root exists; only the state directories beneath it are created
    target.parent.mkdir(parents=True, exist_ok=True)
    started = time.monotonic()

    while True:
        try:
            target.mkdir(parents=False, exist_ok=False)
        except FileExistsError:
            owner = target / OWNER_FILE
            if _is_stale(owner, ttl_seconds):
                logger.warning("Breaking stale installer lock %s", target)
                try:
                    owner.unlink(missing_ok=True)
                    target.rmdir()
                except OSError:
                    pass
            if (time.monotonic() - started) >= timeout_seconds:
                raise PreconditionError(
                    f"installation root is locked by another operation ({target}); "
                    "remove the lock directory if no installer is running"
                )
            time.sleep(poll_interval_seconds)
            continue

        lock_id = uuid.uuid4().hex
        payload = {
            "lock_id": lock_id,
            "pid": os.getpid(),
            "acquired_at": _utc_now().isoformat(timespec="seconds"),
        }
        atomic_write_text(target / OWNER_FILE, json.dumps(payload, ensure_ascii=True) + "\n")
        return InstallLock(lock_dir=target, lock_id=lock_id)


@contextmanager
def hold_install_lock(root: Path, **kwargs) -> Iterator[InstallLock]:
    lock = acquire_install_lock(root, **kwargs)
    try:
        yield lock
    finally:
        lock.release()
