"""Error kinds raised by the scheduling core and the result record returned
to callers of the service layer."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(enum.StrEnum):
    NOT_FOUND = "NOT_FOUND"
    MISSING_DURATION = "MISSING_DURATION"
    OVERDUE = "OVERDUE_TASK"
    NOT_A_DAG = "NOT_A_DAG"
    PARENT_UNRESOLVED = "PARENT_UNRESOLVED"
    CHILD_UNRESOLVED = "CHILD_UNRESOLVED"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    INVALID_TRANSITION = "INVALID_TRANSITION"


class TaskError(Exception):
    """A structured failure: machine code, message and optional details."""

    def __init__(self, kind: ErrorKind, message: str, **details: Any):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            d["details"] = self.details
        return d

    def __repr__(self) -> str:
        return f"TaskError({self.code}, {self.message!r})"


def not_found(task_id: int) -> TaskError:
    return TaskError(ErrorKind.NOT_FOUND, f"Task not found: {task_id}", task_id=task_id)


def missing_duration(task_id: int) -> TaskError:
    return TaskError(
        ErrorKind.MISSING_DURATION,
        f"Task {task_id} has no positive duration estimate",
        task_id=task_id,
    )


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value (``ok``) or a :class:`TaskError`."""

    ok: bool
    value: T | None = None
    error: TaskError | None = field(default=None, compare=False)

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: TaskError) -> Result[T]:
        return cls(ok=False, error=error)

    @classmethod
    def capture(cls, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Result[T]:
        """Call *fn*; a raised TaskError becomes a failed result."""
        try:
            return cls.success(fn(*args, **kwargs))
        except TaskError as e:
            return cls.failure(e)

    def unwrap(self) -> T:
        if not self.ok:
            assert self.error is not None
            raise self.error
        return self.value  # type: ignore[return-value]
