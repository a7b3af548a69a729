"""Error taxonomy shared by the vault orchestrator, policy checks and CLI.

Every failure surfaced to a caller is a ``VaultError`` with a stable ``kind``
tag, a human-readable ``detail`` and the HTTP status an outer layer should use.
"""

from __future__ import annotations

from enum import StrEnum

__all__ = [
    "ErrorKind",
    "FileTooLarge",
    "Forbidden",
    "InvalidFileType",
    "MalformedRequest",
    "NotFound",
    "StorageFailure",
    "Unauthorized",
    "UploadTimeout",
    "VaultError",
]


class ErrorKind(StrEnum):
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    NOT_FOUND = "NotFound"
    INVALID_FILE_TYPE = "InvalidFileType"
    FILE_TOO_LARGE = "FileTooLarge"
    UPLOAD_TIMEOUT = "UploadTimeout"
    STORAGE_FAILURE = "StorageFailure"
    MALFORMED_REQUEST = "MalformedRequest"


class VaultError(RuntimeError):
    """Base exception for every vault operation failure."""

    kind: ErrorKind = ErrorKind.STORAGE_FAILURE
    status_code: int = 500

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind.value, "status": self.status_code, "detail": self.detail}


class Unauthorized(VaultError):
    """Raised when an operation needs an authenticated principal."""

    kind = ErrorKind.UNAUTHORIZED
    status_code = 401


class Forbidden(VaultError):
    """Raised when the principal lacks the role or visibility required."""

    kind = ErrorKind.FORBIDDEN
    status_code = 403


class NotFound(VaultError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class InvalidFileType(VaultError):
    kind = ErrorKind.INVALID_FILE_TYPE
    status_code = 415


class FileTooLarge(VaultError):
    kind = ErrorKind.FILE_TOO_LARGE
    status_code = 413


class UploadTimeout(VaultError):
    """Raised when a client streams content slower than the configured floor."""

    kind = ErrorKind.UPLOAD_TIMEOUT
    status_code = 408


class StorageFailure(VaultError):
    """Raised when a file-system or catalog write fails mid-operation."""

    kind = ErrorKind.STORAGE_FAILURE
    status_code = 500


class MalformedRequest(VaultError):
    kind = ErrorKind.MALFORMED_REQUEST
    status_code = 400
