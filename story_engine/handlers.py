"""
Story aggregate and domain event use cases.

Every handler runs the same steps in order: authorize, validate, load,
mutate, record one event. Expected outcomes come back as values
(Ok or one of the error types); anything else propagates.
"""

import functools
import time

from story_engine.auth import authorize
from story_engine.contracts import (
    AddTaskBasicDetailsToStoryCommand,
    CaptureStoryBasicDetailsCommand,
    DomainEventDto,
    GetDomainEventsByAggregateIdQuery,
    GetStoriesPagedQuery,
    GetStoryByIdQuery,
    RemoveStoryCommand,
    RemoveTaskCommand,
    ReviseStoryBasicDetailsCommand,
    ReviseTaskBasicDetailsCommand,
    StoriesPage,
    StoryDto,
    TaskDto,
)
from story_engine.domain import Story, validate_description, validate_id, validate_title
from story_engine.environment import Env
from story_engine.errors import (
    DuplicateStory,
    DuplicateTask,
    Ok,
    StoryNotFound,
    TaskNotFound,
    ValidationError,
    ValidationErrors,
)
from story_engine.paging import MAX_PAGE_SIZE, decode_cursor, encode_cursor


def request_handler(func):
    """Log payload and duration, and gate on the role the request type requires."""

    @functools.wraps(func)
    async def wrapper(env: Env, request):
        use_case = type(request).__name__
        env.logger.log_request_payload(use_case, request)
        started = time.perf_counter()
        try:
            denied = authorize(env.identity.get_current(), use_case)
            if denied is not None:
                return denied
            return await func(env, request)
        finally:
            env.logger.log_request_duration(use_case, (time.perf_counter() - started) * 1000)

    return wrapper


def _invalid(errors: list[ValidationError]) -> ValidationErrors | None:
    return ValidationErrors(errors) if errors else None


def to_story_dto(story: Story) -> StoryDto:
    return StoryDto(
        id=story.id,
        title=story.title,
        description=story.description,
        created_at=story.created_at,
        updated_at=story.updated_at,
        tasks=[
            TaskDto(
                id=t.id,
                title=t.title,
                description=t.description,
                created_at=t.created_at,
                updated_at=t.updated_at,
            )
            for t in story.tasks
        ],
    )


# commands

@request_handler
async def capture_story_basic_details(env: Env, cmd: CaptureStoryBasicDetailsCommand):
    errors: list[ValidationError] = []
    validate_id("id", cmd.id, errors)
    validate_title("title", cmd.title, errors)
    validate_description("description", cmd.description, errors)
    if invalid := _invalid(errors):
        return invalid

    if await env.store.exists(cmd.id):
        return DuplicateStory(cmd.id)

    _, event = Story.capture(cmd.id, cmd.title, cmd.description, env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.id)


@request_handler
async def add_task_basic_details_to_story(env: Env, cmd: AddTaskBasicDetailsToStoryCommand):
    errors: list[ValidationError] = []
    validate_id("story_id", cmd.story_id, errors)
    validate_id("task_id", cmd.task_id, errors)
    validate_title("title", cmd.title, errors)
    validate_description("description", cmd.description, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(cmd.story_id)
    if story is None:
        return StoryNotFound(cmd.story_id)
    # Task ids are unique across stories, not only within one.
    if story.find_task(cmd.task_id) is not None or await env.store.task_exists(cmd.task_id):
        return DuplicateTask(cmd.task_id)

    event = story.add_task(cmd.task_id, cmd.title, cmd.description, env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.task_id)


@request_handler
async def revise_story_basic_details(env: Env, cmd: ReviseStoryBasicDetailsCommand):
    errors: list[ValidationError] = []
    validate_id("id", cmd.id, errors)
    validate_title("title", cmd.title, errors)
    validate_description("description", cmd.description, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(cmd.id)
    if story is None:
        return StoryNotFound(cmd.id)

    event = story.revise(cmd.title, cmd.description, env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.id)


@request_handler
async def revise_task_basic_details(env: Env, cmd: ReviseTaskBasicDetailsCommand):
    errors: list[ValidationError] = []
    validate_id("story_id", cmd.story_id, errors)
    validate_id("task_id", cmd.task_id, errors)
    validate_title("title", cmd.title, errors)
    validate_description("description", cmd.description, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(cmd.story_id)
    if story is None:
        return StoryNotFound(cmd.story_id)
    if story.find_task(cmd.task_id) is None:
        return TaskNotFound(cmd.task_id)

    event = story.revise_task(cmd.task_id, cmd.title, cmd.description, env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.task_id)


@request_handler
async def remove_story(env: Env, cmd: RemoveStoryCommand):
    errors: list[ValidationError] = []
    validate_id("id", cmd.id, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(cmd.id)
    if story is None:
        return StoryNotFound(cmd.id)

    event = story.remove(env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.id)


@request_handler
async def remove_task(env: Env, cmd: RemoveTaskCommand):
    errors: list[ValidationError] = []
    validate_id("story_id", cmd.story_id, errors)
    validate_id("task_id", cmd.task_id, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(cmd.story_id)
    if story is None:
        return StoryNotFound(cmd.story_id)
    if story.find_task(cmd.task_id) is None:
        return TaskNotFound(cmd.task_id)

    event = story.remove_task(cmd.task_id, env.clock.current_utc())
    await env.store.apply_event(event)
    return Ok(cmd.task_id)


# queries

@request_handler
async def get_story_by_id(env: Env, query: GetStoryByIdQuery):
    errors: list[ValidationError] = []
    validate_id("id", query.id, errors)
    if invalid := _invalid(errors):
        return invalid

    story = await env.store.get_by_id(query.id)
    if story is None:
        return StoryNotFound(query.id)
    return Ok(to_story_dto(story))


@request_handler
async def get_stories_paged(env: Env, query: GetStoriesPagedQuery):
    errors: list[ValidationError] = []
    if not 1 <= query.limit <= MAX_PAGE_SIZE:
        errors.append(ValidationError("limit", f"Must be between 1 and {MAX_PAGE_SIZE}"))
    after = None
    if query.cursor is not None:
        after = decode_cursor(query.cursor)
        if after is None:
            errors.append(ValidationError("cursor", "Malformed cursor"))
    if invalid := _invalid(errors):
        return invalid

    stories, next_key = await env.store.get_paged(query.limit, after)
    return Ok(
        StoriesPage(
            items=[to_story_dto(s) for s in stories],
            cursor=encode_cursor(next_key),
        )
    )


@request_handler
async def get_domain_events_by_aggregate_id(env: Env, query: GetDomainEventsByAggregateIdQuery):
    errors: list[ValidationError] = []
    validate_id("id", query.id, errors)
    if invalid := _invalid(errors):
        return invalid

    events = await env.store.get_domain_events(query.id)
    return Ok([DomainEventDto(**e) for e in events])
