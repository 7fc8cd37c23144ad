from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from story_engine.errors import ValidationError

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000
NIL_ID = UUID(int=0)

AGGREGATE_TYPE = "Story"


# validation rules

def validate_id(field_name: str, value: UUID, errors: list[ValidationError]) -> None:
    if value == NIL_ID:
        errors.append(ValidationError(field_name, "Must not be the empty id"))


def validate_title(field_name: str, value: str, errors: list[ValidationError]) -> None:
    if not value or not value.strip():
        errors.append(ValidationError(field_name, "Must not be empty"))
    elif len(value.strip()) > TITLE_MAX_LENGTH:
        errors.append(
            ValidationError(field_name, f"Must be at most {TITLE_MAX_LENGTH} characters")
        )


def validate_description(field_name: str, value: str | None, errors: list[ValidationError]) -> None:
    if value is not None and len(value) > DESCRIPTION_MAX_LENGTH:
        errors.append(
            ValidationError(field_name, f"Must be at most {DESCRIPTION_MAX_LENGTH} characters")
        )


# events

@dataclass(frozen=True)
class DomainEvent:
    aggregate_id: UUID
    occurred_at: datetime

    @property
    def aggregate_type(self) -> str:
        return AGGREGATE_TYPE

    @property
    def event_type(self) -> str:
        return type(self).__name__

    def payload(self) -> dict:
        return {}


@dataclass(frozen=True)
class StoryBasicDetailsCaptured(DomainEvent):
    title: str
    description: str | None

    def payload(self) -> dict:
        return {"title": self.title, "description": self.description}


@dataclass(frozen=True)
class StoryBasicDetailsRevised(DomainEvent):
    title: str
    description: str | None

    def payload(self) -> dict:
        return {"title": self.title, "description": self.description}


@dataclass(frozen=True)
class StoryRemoved(DomainEvent):
    pass


@dataclass(frozen=True)
class TaskBasicDetailsAddedToStory(DomainEvent):
    task_id: UUID
    title: str
    description: str | None

    def payload(self) -> dict:
        return {
            "task_id": str(self.task_id),
            "title": self.title,
            "description": self.description,
        }


@dataclass(frozen=True)
class TaskBasicDetailsRevised(DomainEvent):
    task_id: UUID
    title: str
    description: str | None

    def payload(self) -> dict:
        return {
            "task_id": str(self.task_id),
            "title": self.title,
            "description": self.description,
        }


@dataclass(frozen=True)
class TaskRemoved(DomainEvent):
    task_id: UUID

    def payload(self) -> dict:
        return {"task_id": str(self.task_id)}


# aggregate

@dataclass
class Task:
    id: UUID
    title: str
    description: str | None
    created_at: datetime
    updated_at: datetime | None = None


@dataclass
class Story:
    """
    Aggregate root. Owns its tasks; every mutation returns the event
    describing it so the caller can hand it to the store.
    """

    id: UUID
    title: str
    description: str | None
    created_at: datetime
    updated_at: datetime | None = None
    tasks: list[Task] = field(default_factory=list)

    @classmethod
    def capture(cls, story_id: UUID, title: str, description: str | None, now: datetime):
        story = cls(story_id, title.strip(), description, now)
        event = StoryBasicDetailsCaptured(story.id, now, story.title, story.description)
        return story, event

    def revise(self, title: str, description: str | None, now: datetime) -> StoryBasicDetailsRevised:
        self.title = title.strip()
        self.description = description
        self.updated_at = now
        return StoryBasicDetailsRevised(self.id, now, self.title, self.description)

    def remove(self, now: datetime) -> StoryRemoved:
        self.tasks.clear()
        return StoryRemoved(self.id, now)

    def find_task(self, task_id: UUID) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def add_task(
        self, task_id: UUID, title: str, description: str | None, now: datetime
    ) -> TaskBasicDetailsAddedToStory:
        if self.find_task(task_id) is not None:
            raise ValueError(f"Task {task_id} already belongs to story {self.id}")
        task = Task(task_id, title.strip(), description, now)
        self.tasks.append(task)
        return TaskBasicDetailsAddedToStory(self.id, now, task.id, task.title, task.description)

    def revise_task(
        self, task_id: UUID, title: str, description: str | None, now: datetime
    ) -> TaskBasicDetailsRevised:
        task = self._require_task(task_id)
        task.title = title.strip()
        task.description = description
        task.updated_at = now
        return TaskBasicDetailsRevised(self.id, now, task.id, task.title, task.description)

    def remove_task(self, task_id: UUID, now: datetime) -> TaskRemoved:
        task = self._require_task(task_id)
        self.tasks.remove(task)
        return TaskRemoved(self.id, now, task.id)

    def _require_task(self, task_id: UUID) -> Task:
        task = self.find_task(task_id)
        if task is None:
            raise ValueError(f"Task {task_id} does not belong to story {self.id}")
        return task
