from dataclasses import dataclass, field
from typing import Generic, TypeVar
from uuid import UUID

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class ValidationError:
    field: str
    message: str


@dataclass(frozen=True)
class ValidationErrors:
    errors: list[ValidationError] = field(default_factory=list)


@dataclass(frozen=True)
class AuthorizationError:
    message: str


@dataclass(frozen=True)
class StoryNotFound:
    id: UUID


@dataclass(frozen=True)
class TaskNotFound:
    id: UUID


@dataclass(frozen=True)
class DuplicateStory:
    id: UUID


@dataclass(frozen=True)
class DuplicateTask:
    id: UUID


class InconsistentStateError(Exception):
    """Raised when the database contradicts an invariant the store relies on."""
