"""Canonical per-file failure reasons and operation exit codes.

Values here are surfaced verbatim in CLI output and in ``MappingResult.failed``;
tests assert on them, so change emitters and tests together.
"""

from __future__ import annotations

from typing import Final

# Per-file failure reasons.
REASON_SOURCE_NOT_FOUND: Final[str] = "source file not found"
REASON_INTEGRITY_FAILED: Final[str] = "integrity check failed"
REASON_BACKUP_FAILED: Final[str] = "backup failed"
REASON_COPY_FAILED: Final[str] = "copy failed"
REASON_TARGET_OUTSIDE_ROOT: Final[str] = "target outside installation root"
REASON_NOT_ATTEMPTED: Final[str] = "not attempted (run aborted)"
REASON_REMOVE_FAILED: Final[str] = "remove failed"
REASON_RESTORE_FAILED: Final[str] = "restore failed"

# Operation exit codes.
EXIT_OK: Final[int] = 0
EXIT_FAILED: Final[int] = 1
EXIT_PARTIAL: Final[int] = 2
EXIT_APPLIED_UNRECORDED: Final[int] = 3

# Error kinds.
KIND_CONFIGURATION: Final[str] = "configuration"
KIND_PRECONDITION: Final[str] = "precondition"
KIND_REMOTE: Final[str] = "remote"
KIND_PACKAGE_INVALID: Final[str] = "package-invalid"
KIND_RECORD_PERSISTENCE: Final[str] = "record-persistence"
KIND_APPLIED_UNRECORDED: Final[str] = "applied-but-unrecorded"

# Remote messages signalling that the local version is behind.
UPDATE_AVAILABLE_MESSAGES: Final[frozenset[str]] = frozenset({"version mismatch", "invalidver"})
