from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


# commands

class CaptureStoryBasicDetailsCommand(BaseModel):
    id: UUID
    title: str
    description: str | None = None


class AddTaskBasicDetailsToStoryCommand(BaseModel):
    story_id: UUID
    task_id: UUID
    title: str
    description: str | None = None


class ReviseStoryBasicDetailsCommand(BaseModel):
    id: UUID
    title: str
    description: str | None = None


class ReviseTaskBasicDetailsCommand(BaseModel):
    story_id: UUID
    task_id: UUID
    title: str
    description: str | None = None


class RemoveStoryCommand(BaseModel):
    id: UUID


class RemoveTaskCommand(BaseModel):
    story_id: UUID
    task_id: UUID


# queries

class GetStoryByIdQuery(BaseModel):
    id: UUID


class GetStoriesPagedQuery(BaseModel):
    limit: int
    cursor: str | None = None


class GetDomainEventsByAggregateIdQuery(BaseModel):
    id: UUID


# read models

class TaskDto(BaseModel):
    id: UUID
    title: str
    description: str | None
    created_at: datetime
    updated_at: datetime | None


class StoryDto(BaseModel):
    id: UUID
    title: str
    description: str | None
    created_at: datetime
    updated_at: datetime | None
    tasks: list[TaskDto]


class StoriesPage(BaseModel):
    items: list[StoryDto]
    cursor: str | None


class DomainEventDto(BaseModel):
    id: int
    aggregate_id: UUID
    aggregate_type: str
    event_type: str
    payload: dict
    created_at: datetime


# HTTP bodies

class StoryBasicDetailsRequest(BaseModel):
    title: str
    description: str | None = None


class TaskBasicDetailsRequest(BaseModel):
    title: str
    description: str | None = None
