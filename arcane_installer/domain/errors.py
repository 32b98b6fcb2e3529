from __future__ import annotations

from typing import Sequence

from arcane_installer.domain import reason_codes


class InstallerError(Exception):
    kind: str = "installer"
    exit_code: int = reason_codes.EXIT_FAILED


class ConfigurationError(InstallerError):
    kind = reason_codes.KIND_CONFIGURATION


class PreconditionError(InstallerError):
    kind = reason_codes.KIND_PRECONDITION


class RemoteError(InstallerError):
    kind = reason_codes.KIND_REMOTE


class PackageValidationError(InstallerError):
    """Package content or manifest rejected before the installation root was touched."""

    kind = reason_codes.KIND_PACKAGE_INVALID

    def __init__(self, message: str, failures: Sequence[tuple[str, str]] = ()):
        super().__init__(message)
        self.failures: list[tuple[str, str]] = list(failures)


class RecordPersistenceError(InstallerError):
    kind = reason_codes.KIND_RECORD_PERSISTENCE


class AppliedButUnrecordedError(RecordPersistenceError):
    """Files were written to the installation root but the record could not be saved.

    Uninstall and update depend on the record, so the operator has to reconcile
    the installation root by hand.
    """

    kind = reason_codes.KIND_APPLIED_UNRECORDED
    exit_code = reason_codes.EXIT_APPLIED_UNRECORDED

    def __init__(self, message: str, applied: Sequence[str] = ()):
        super().__init__(message)
        self.applied: list[str] = list(applied)


class BackupError(InstallerError):
    """Raised by the backup store; the file mapper turns it into a per-file failure."""
