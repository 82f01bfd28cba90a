from __future__ import annotations


class RestoreError(Exception):
    """Base class for restore failures that abort the whole call."""


class ValidationError(RestoreError):
    """Raised when caller input is rejected before any read or write."""


class BackupFormatError(ValidationError):
    """Raised when backup bytes do not parse or do not match the backup schema."""


class WorkspaceNotFoundError(RestoreError):
    pass


class RestoreTimeoutError(RestoreError):
    def __init__(self, timeout_s: float) -> None:
        self.timeout_s = float(timeout_s)
        super().__init__(f"Restore timed out after {self.timeout_s:g}s")
