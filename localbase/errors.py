"""Error taxonomy for the emulation layer.

Internal helpers raise these exceptions. Public methods never let them
escape: ``localbase.results.returns_result`` converts them into a failed
``Result`` whose ``error`` carries ``code``, ``message`` and ``details``.
"""

from typing import Any


class LocalbaseError(Exception):
    """
    Base error for all localbase failures.

    Attributes:
        message: Human readable description
        details: Structured context (bucket, path, table, ...)
        cause: Underlying exception, if any
    """

    code = "localbase_error"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause
        if code is not None:
            self.code = code

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class NotFoundError(LocalbaseError):
    """Bucket, file or record absent."""

    code = "not_found"


class ConflictError(LocalbaseError):
    """Unique constraint violation (duplicate email, duplicate file path)."""

    code = "conflict"


class ValidationError(LocalbaseError):
    """Malformed input: bad identifier, bad path, unknown column."""

    code = "validation_error"


class AuthError(LocalbaseError):
    """Sign-in rejected. The message is deliberately generic."""

    code = "invalid_credentials"


class FilesystemError(LocalbaseError):
    """I/O failure distinct from record-state mismatches."""

    code = "filesystem_error"


class StoreError(LocalbaseError):
    """Underlying datastore execution failure."""

    code = "store_error"

    def __init__(
        self,
        message: str,
        cause: BaseException | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details=details, cause=cause)

    @property
    def is_unique_violation(self) -> bool:
        """True when the datastore rejected a duplicate key."""
        text = str(self.cause or self.message).lower()
        return "duplicate key" in text or "unique constraint" in text


def translate_store_error(error: StoreError, **details: Any) -> LocalbaseError:
    """Turn a duplicate-key StoreError into a ConflictError, else return it unchanged."""
    if error.is_unique_violation:
        return ConflictError(
            "Duplicate key violates a unique constraint",
            details={**details, "cause": str(error.cause or error.message)},
            cause=error,
        )
    if details:
        error.details = {**error.details, **details}
    return error
