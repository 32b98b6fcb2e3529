"""Crash-safe file writes for the installation root.

Every write lands in a sibling temp file, is fsynced, and is moved over the
destination with ``os.replace``; readers see either the old bytes or the new
bytes, never a torn file.
"""

from __future__ import annotations

import errno
import json
import os
from pathlib import Path
import shutil
import tempfile
import time
from typing import Any, Callable, TypeVar

T = TypeVar("T")

COPY_CHUNK_BYTES = 1024 * 1024


def is_retryable_replace_error(exc: OSError) -> bool:
    # Windows reports a target held open by another process as EACCES/EBUSY.
    return getattr(exc, "errno", None) in {errno.EACCES, errno.EPERM, errno.EBUSY}


def bounded_retry(fn: Callable[[], T], attempts: int = 5, backoff_ms: int = 50) -> T:
    for attempt in range(attempts):
        try:
            return fn()
        except OSError as exc:
            if attempt == attempts - 1 or not is_retryable_replace_error(exc):
                raise
            time.sleep(backoff_ms / 1000.0)
    raise RuntimeError("bounded_retry called with attempts < 1")


def fsync_dir(path: Path) -> None:
    try:
        fd = os.open(str(path), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def safe_replace(tmp: Path, target: Path, *, attempts: int = 5, backoff_ms: int = 50) -> None:
    def _replace() -> None:
        os.replace(str(tmp), str(target))
        fsync_dir(target.parent)

    bounded_retry(_replace, attempts=attempts, backoff_ms=backoff_ms)


def _write_via_temp(path: Path, writer: Callable[[Any], None], *, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path: Path | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="wb",
            dir=str(path.parent),
            prefix="." + path.name + ".",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            temp_path = Path(tmp.name)
            writer(tmp)
            tmp.flush()
            os.fsync(tmp.fileno())
        if mode is not None:
            os.chmod(temp_path, mode)
        safe_replace(temp_path, path)
    finally:
        if temp_path is not None and temp_path.exists():
            temp_path.unlink(missing_ok=True)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    _write_via_temp(path, lambda handle: handle.write(data))


def atomic_write_text(path: Path, text: str) -> None:
    atomic_write_bytes(path, text.replace("\r\n", "\n").encode("utf-8"))


def atomic_write_json(path: Path, obj: Any, *, indent: int = 2) -> None:
    atomic_write_text(path, json.dumps(obj, indent=indent, ensure_ascii=False) + "\n")


def atomic_copy_file(src: Path, dst: Path, *, mode: int | None = None) -> None:
    """Stream ``src`` into ``dst`` without ever exposing a partially written ``dst``."""

    with src.open("rb") as source:
        _write_via_temp(dst, lambda handle: shutil.copyfileobj(source, handle, COPY_CHUNK_BYTES), mode=mode)
