"""Operation results and the error taxonomy shared by caches and reconciler."""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Machine-readable failure reasons."""

    MISSING_CREDENTIAL = "missing_credential"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN_WHILE_BUSY = "forbidden_while_busy"
    REMOTE_CALL_FAILED = "remote_call_failed"
    TASK_NOT_FOUND = "task_not_found"
    CALL_IN_PROGRESS = "call_in_progress"


@dataclass(frozen=True)
class OperationResult:
    """
    Outcome of a public reconciler operation.

    Attributes:
        success: Whether the operation completed
        error_code: Failure reason (None on success)
        message: Human-readable detail for either outcome
    """

    success: bool
    error_code: ErrorCode | None = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls, message: str = "") -> "OperationResult":
        return cls(success=True, message=message)

    @classmethod
    def fail(cls, error_code: ErrorCode, message: str) -> "OperationResult":
        return cls(success=False, error_code=error_code, message=message)


@dataclass(frozen=True)
class CacheError:
    """Last error recorded on a cache, surfaced to observers."""

    code: ErrorCode
    message: str
