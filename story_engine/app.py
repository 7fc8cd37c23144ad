import uuid
from contextlib import asynccontextmanager
from uuid import UUID

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from story_engine import handlers
from story_engine.auth import Principal
from story_engine.capability_resolver import resolve_roles
from story_engine.config import get_settings
from story_engine.contracts import (
    AddTaskBasicDetailsToStoryCommand,
    CaptureStoryBasicDetailsCommand,
    GetDomainEventsByAggregateIdQuery,
    GetStoriesPagedQuery,
    GetStoryByIdQuery,
    RemoveStoryCommand,
    RemoveTaskCommand,
    ReviseStoryBasicDetailsCommand,
    ReviseTaskBasicDetailsCommand,
    StoryBasicDetailsRequest,
    TaskBasicDetailsRequest,
)
from story_engine.db import Database
from story_engine.environment import UnitOfWork
from story_engine.errors import (
    AuthorizationError,
    DuplicateStory,
    DuplicateTask,
    Ok,
    StoryNotFound,
    TaskNotFound,
    ValidationErrors,
)
from story_engine.logging_config import setup_logging
from story_engine.migrations import apply_migrations
from story_engine.providers import StaticIdentity, StructlogRequestLogger, SystemClock

PROBLEM_JSON = "application/problem+json"


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    await apply_migrations(Database(settings.db_path), StructlogRequestLogger())
    yield
    # Shutdown (nothing needed yet)


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=list(get_settings().allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def bind_request_id(request: Request, call_next):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("X-Request-Id") or str(uuid.uuid4())
    )
    return await call_next(request)


# RFC 7807 style error body

def problem(status: int, detail, accept: str | None) -> JSONResponse:
    wants_problem = accept is not None and PROBLEM_JSON in accept
    return JSONResponse(
        status_code=status,
        content={"type": "Error", "title": "Error", "status": status, "detail": detail},
        media_type=PROBLEM_JSON if wants_problem else "application/json",
    )


def error_response(error, accept: str | None) -> JSONResponse:
    if isinstance(error, ValidationErrors):
        detail = [{"field": e.field, "message": e.message} for e in error.errors]
        return problem(400, detail, accept)
    if isinstance(error, AuthorizationError):
        return problem(403, error.message, accept)
    if isinstance(error, StoryNotFound):
        return problem(404, f"Story not found: '{error.id}'", accept)
    if isinstance(error, TaskNotFound):
        return problem(404, f"Task not found: '{error.id}'", accept)
    if isinstance(error, DuplicateStory):
        return problem(409, f"Duplicate story: '{error.id}'", accept)
    if isinstance(error, DuplicateTask):
        return problem(409, f"Duplicate task: '{error.id}'", accept)
    raise TypeError(f"Unmapped error result: {error!r}")


@app.exception_handler(RequestValidationError)
async def request_validation_error(request: Request, exc: RequestValidationError):
    detail = [
        {"field": ".".join(str(p) for p in e["loc"][1:]) or str(e["loc"][0]), "message": e["msg"]}
        for e in exc.errors()
    ]
    return problem(400, detail, request.headers.get("accept"))


# dependencies

def get_identity(x_actor_id: str = Header(default="")) -> StaticIdentity:
    return StaticIdentity(Principal(x_actor_id, resolve_roles(x_actor_id)))


async def get_unit_of_work(identity: StaticIdentity = Depends(get_identity)):
    database = Database(get_settings().db_path)
    async with UnitOfWork(database, identity, SystemClock(), StructlogRequestLogger()) as uow:
        yield uow


async def run(uow: UnitOfWork, handler, request, on_ok, accept: str | None) -> Response:
    """Commit on Ok, roll back on any other outcome."""
    try:
        env = await uow.begin()
        result = await handler(env, request)
        if isinstance(result, Ok):
            await uow.commit()
            return on_ok(result.value)
        await uow.rollback()
        return error_response(result, accept)
    except Exception as e:
        uow.logger.log_exception(e)
        await uow.rollback()
        return problem(500, "Internal server error", accept)


def created(location: str):
    def respond(value: UUID) -> JSONResponse:
        return JSONResponse(
            status_code=201,
            content={"id": str(value)},
            headers={"Location": location.format(id=value)},
        )
    return respond


def ok_id(value: UUID) -> JSONResponse:
    return JSONResponse(content={"id": str(value)})


def ok_model(value) -> JSONResponse:
    if isinstance(value, list):
        return JSONResponse(content=[v.model_dump(mode="json") for v in value])
    return JSONResponse(content=value.model_dump(mode="json"))


#END points

@app.post("/stories")
async def capture_story(
    body: StoryBasicDetailsRequest,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = CaptureStoryBasicDetailsCommand(
        id=uuid.uuid4(), title=body.title, description=body.description
    )
    return await run(uow, handlers.capture_story_basic_details, cmd, created("/stories/{id}"), accept)


@app.put("/stories/{story_id}")
async def revise_story(
    story_id: UUID,
    body: StoryBasicDetailsRequest,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = ReviseStoryBasicDetailsCommand(
        id=story_id, title=body.title, description=body.description
    )
    return await run(uow, handlers.revise_story_basic_details, cmd, ok_id, accept)


@app.delete("/stories/{story_id}")
async def remove_story(
    story_id: UUID,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = RemoveStoryCommand(id=story_id)
    return await run(uow, handlers.remove_story, cmd, ok_id, accept)


@app.post("/stories/{story_id}/tasks")
async def add_task_to_story(
    story_id: UUID,
    body: TaskBasicDetailsRequest,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = AddTaskBasicDetailsToStoryCommand(
        story_id=story_id, task_id=uuid.uuid4(), title=body.title, description=body.description
    )
    location = f"/stories/{story_id}/tasks/{{id}}"
    return await run(uow, handlers.add_task_basic_details_to_story, cmd, created(location), accept)


@app.put("/stories/{story_id}/tasks/{task_id}")
async def revise_task(
    story_id: UUID,
    task_id: UUID,
    body: TaskBasicDetailsRequest,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = ReviseTaskBasicDetailsCommand(
        story_id=story_id, task_id=task_id, title=body.title, description=body.description
    )
    return await run(uow, handlers.revise_task_basic_details, cmd, ok_id, accept)


@app.delete("/stories/{story_id}/tasks/{task_id}")
async def remove_task(
    story_id: UUID,
    task_id: UUID,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    cmd = RemoveTaskCommand(story_id=story_id, task_id=task_id)
    return await run(uow, handlers.remove_task, cmd, ok_id, accept)


@app.get("/stories/{story_id}")
async def get_story(
    story_id: UUID,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    query = GetStoryByIdQuery(id=story_id)
    return await run(uow, handlers.get_story_by_id, query, ok_model, accept)


@app.get("/stories")
async def get_stories(
    limit: int = Query(default=20),
    cursor: str | None = Query(default=None),
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    query = GetStoriesPagedQuery(limit=limit, cursor=cursor)
    return await run(uow, handlers.get_stories_paged, query, ok_model, accept)


@app.get("/domain-events/{aggregate_id}")
async def get_domain_events(
    aggregate_id: UUID,
    accept: str | None = Header(default=None),
    uow: UnitOfWork = Depends(get_unit_of_work),
):
    query = GetDomainEventsByAggregateIdQuery(id=aggregate_id)
    return await run(uow, handlers.get_domain_events_by_aggregate_id, query, ok_model, accept)
