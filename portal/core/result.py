"""
Result pattern for expected failures.

Services return `Success`/`Failure` instead of raising for outcomes the caller
is expected to handle (missing record, duplicate title, invalid input), and
routers turn the error side into an HTTP response:

    match await directors.create(payload):
        case Success(director):
            ...
        case Failure(ConflictError() as error):
            ...
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Mapping, TypeVar, Union, cast

T = TypeVar("T")
E = TypeVar("E")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Success(Generic[T]):
    """Represents a successful operation result."""

    value: T

    def is_success(self) -> bool:
        return True

    def is_failure(self) -> bool:
        return False

    def unwrap(self) -> T:
        return self.value

    def unwrap_or(self, _default: T) -> T:
        return self.value

    def map(self, func: Callable[[T], U]) -> Result[U, E]:
        return Success(func(self.value))

    def __repr__(self) -> str:
        return f"Success({self.value!r})"


@dataclass(frozen=True, slots=True)
class Failure(Generic[E]):
    """Represents a failed operation result."""

    error: E

    def is_success(self) -> bool:
        return False

    def is_failure(self) -> bool:
        return True

    def unwrap(self) -> Any:
        """Raise the error when trying to extract a value."""
        if isinstance(self.error, Exception):
            raise self.error
        raise RuntimeError(f"Operation failed: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, _func: Callable[[T], U]) -> Result[U, E]:
        return cast(Result[U, E], self)

    def __repr__(self) -> str:
        return f"Failure({self.error!r})"


Result = Union[Success[T], Failure[E]]


def success(value: T) -> Success[T]:
    return Success(value)


def failure(error: E) -> Failure[E]:
    return Failure(error)


@dataclass(frozen=True, slots=True)
class NotFoundError:
    """Entity not found error."""

    entity_type: str
    entity_id: str | int
    message: str | None = None
    code: str = "NOT_FOUND"

    def __str__(self) -> str:
        if self.message:
            return self.message
        return f"{self.entity_type} with id={self.entity_id} not found"


@dataclass(frozen=True, slots=True)
class ValidationError:
    """Input rejected before any write."""

    field: str
    message: str
    value: str | None = None
    code: str = "VALIDATION_ERROR"

    def __str__(self) -> str:
        if self.value:
            return f"{self.field}: {self.message} (got: {self.value})"
        return f"{self.field}: {self.message}"


@dataclass(frozen=True, slots=True)
class ConflictError:
    """Duplicate key or state conflict; `details` names the conflicting record."""

    entity_type: str
    message: str
    conflicting_field: str | None = None
    code: str = "CONFLICT"
    details: Mapping[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class DatabaseError:
    """Database operation error."""

    operation: str
    message: str
    original_exception: Exception | None = None
    code: str = "DATABASE_ERROR"

    def __str__(self) -> str:
        return f"Database error during {self.operation}: {self.message}"


ServiceError = Union[NotFoundError, ValidationError, ConflictError, DatabaseError]


def collect_results(results: list[Result[T, E]]) -> Result[list[T], E]:
    """Collapse a list of Results, returning the first Failure if any."""
    values: list[T] = []
    for result in results:
        if result.is_failure():
            return cast(Result[list[T], E], result)
        values.append(result.unwrap())
    return Success(values)


__all__ = [
    "ConflictError",
    "DatabaseError",
    "Failure",
    "NotFoundError",
    "Result",
    "ServiceError",
    "Success",
    "ValidationError",
    "collect_results",
    "failure",
    "success",
]
