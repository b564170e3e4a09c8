"""Error taxonomy and result type for the Private Judge core."""

from __future__ import annotations

import functools
import inspect
import re
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

import click

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    INVALID_TRANSITION = "invalid_transition"
    JOB_ALREADY_TAKEN = "job_already_taken"
    RETRY_LIMIT_EXCEEDED = "retry_limit_exceeded"
    INSUFFICIENT_JURY_VOTES = "insufficient_jury_votes"
    INCOMPLETE_ROUND = "incomplete_round"

    @property
    def http_status(self) -> int:
        """Suggested HTTP status for web callers."""
        return _HTTP_STATUS[self]


_HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.JOB_ALREADY_TAKEN: 409,
    ErrorKind.RETRY_LIMIT_EXCEEDED: 409,
    ErrorKind.INSUFFICIENT_JURY_VOTES: 422,
    ErrorKind.INCOMPLETE_ROUND: 422,
}


class PrivateJudgeError(Exception):
    """Base class for expected domain failures."""

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PrivateJudgeError):
    """Malformed or out-of-bounds input."""

    kind = ErrorKind.VALIDATION


class NotFound(PrivateJudgeError):
    kind = ErrorKind.NOT_FOUND


class Forbidden(PrivateJudgeError):
    """The requester may not perform this operation."""

    kind = ErrorKind.FORBIDDEN


class InvalidTransition(PrivateJudgeError):
    """Illegal state machine move."""

    kind = ErrorKind.INVALID_TRANSITION


class JobAlreadyTaken(PrivateJudgeError):
    """Another worker moved the job out of a runnable status first."""

    kind = ErrorKind.JOB_ALREADY_TAKEN


class RetryLimitExceeded(PrivateJudgeError):
    kind = ErrorKind.RETRY_LIMIT_EXCEEDED


class InsufficientJuryVotes(PrivateJudgeError):
    kind = ErrorKind.INSUFFICIENT_JURY_VOTES


class IncompleteRound(PrivateJudgeError):
    kind = ErrorKind.INCOMPLETE_ROUND


@dataclass
class Result(Generic[T]):
    """Outcome of a service operation: either a value or a domain error."""

    value: T | None = None
    error: PrivateJudgeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> ErrorKind | None:
        return self.error.kind if self.error else None

    @classmethod
    def success(cls, value: T | None = None) -> Result[T]:
        return cls(value=value)

    @classmethod
    def failed(cls, error: PrivateJudgeError) -> Result[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or re-raise the stored error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"success": False, **self.error.to_dict()}
        return {"success": True, "value": self.value}


def returns_result(func: Callable[..., Any]) -> Callable[..., Any]:
    """Wrap a function so that domain errors come back as ``Result.failed``.

    Works for both coroutine functions and plain functions. Anything that is not a
    ``PrivateJudgeError`` propagates unchanged.
    """
    if inspect.iscoroutinefunction(func):

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
            try:
                return Result.success(await func(*args, **kwargs))
            except PrivateJudgeError as exc:
                return Result.failed(exc)

        return async_wrapper

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Result[Any]:
        try:
            return Result.success(func(*args, **kwargs))
        except PrivateJudgeError as exc:
            return Result.failed(exc)

    return wrapper


# =============================================================================
# Database schema errors
# =============================================================================


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database tables have not been created yet."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _exception_chain(exc):
        match = _PG_MISSING_RELATION_RE.search(str(e))
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    if missing_table_name(exc):
        return True
    return any("undefinedtableerror" in str(e).lower() for e in _exception_chain(exc))


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Private Judge schema is not initialized{table_hint}.",
            "Run: `alembic upgrade head` or `private-judge init-db`",
        ]
    )
