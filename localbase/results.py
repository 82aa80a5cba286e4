"""Dual-channel results returned by every public method.

A ``Result`` carries either ``data`` or ``error``, never both. Callers branch
on ``result.error`` instead of catching exceptions.
"""

import functools
from typing import Any, Awaitable, Callable, ParamSpec

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from localbase.errors import LocalbaseError

logger = structlog.get_logger()

P = ParamSpec("P")


class ErrorInfo(BaseModel):
    """Error half of a Result."""

    message: str = Field(description="Error message")
    code: str = Field(description="Error type, e.g. 'not_found'")
    details: dict[str, Any] | None = Field(default=None, description="Additional error details")


class Result(BaseModel):
    """Either populated data or a populated error."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    data: Any = None
    error: ErrorInfo | None = None

    @model_validator(mode="after")
    def check_single_channel(self) -> "Result":
        if self.error is not None and self.data is not None:
            raise ValueError("Result cannot carry both data and error")
        return self

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: Any = None) -> "Result":
        return cls(data=data)

    @classmethod
    def failure(cls, exc: BaseException) -> "Result":
        """Build a failed Result from any exception."""
        if isinstance(exc, LocalbaseError):
            details = dict(exc.details)
            if exc.cause is not None and "cause" not in details:
                details["cause"] = str(exc.cause)
            return cls(error=ErrorInfo(message=exc.message, code=exc.code, details=details or None))
        return cls(
            error=ErrorInfo(
                message=str(exc) or type(exc).__name__,
                code="internal_error",
                details={"error_type": type(exc).__name__},
            )
        )


def returns_result(
    operation: str,
) -> Callable[[Callable[P, Awaitable[Any]]], Callable[P, Awaitable[Result]]]:
    """
    Wrap a public coroutine so it always returns a Result.

    The wrapped coroutine returns plain data and may raise; the wrapper turns
    the return value into ``Result.success`` and any exception into
    ``Result.failure``. Expected errors are logged at warning level,
    unexpected ones at error level with the traceback.
    """

    def decorator(func: Callable[P, Awaitable[Any]]) -> Callable[P, Awaitable[Result]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> Result:
            try:
                return Result.success(await func(*args, **kwargs))
            except LocalbaseError as e:
                logger.warning(f"{operation}_failed", error=e.message, code=e.code, details=e.details)
                return Result.failure(e)
            except Exception as e:
                logger.error(f"{operation}_error", error=str(e), error_type=type(e).__name__, exc_info=True)
                return Result.failure(e)

        return wrapper

    return decorator
