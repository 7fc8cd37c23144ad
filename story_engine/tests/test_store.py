import asyncio
import uuid
from datetime import datetime, timezone

import pytest

from story_engine import handlers
from story_engine.contracts import CaptureStoryBasicDetailsCommand
from story_engine.db import Database
from story_engine.domain import StoryBasicDetailsRevised, TaskRemoved
from story_engine.errors import DuplicateStory, InconsistentStateError, Ok
from story_engine.migrations import MIGRATIONS, apply_migrations

NOW = datetime(2023, 1, 1, tzinfo=timezone.utc)


def capture_cmd():
    return CaptureStoryBasicDetailsCommand(id=uuid.uuid4(), title="title")


async def test_uncommitted_work_is_discarded(make_uow):
    uow = make_uow()
    env = await uow.begin()
    cmd = capture_cmd()
    assert await handlers.capture_story_basic_details(env, cmd) == Ok(cmd.id)
    await uow.close()

    env = await make_uow().begin()
    assert not await env.store.exists(cmd.id)


async def test_committed_work_is_visible_to_next_unit_of_work(make_uow):
    uow = make_uow()
    env = await uow.begin()
    cmd = capture_cmd()
    await handlers.capture_story_basic_details(env, cmd)
    await uow.commit()

    env = await make_uow().begin()
    assert await env.store.exists(cmd.id)


async def test_rollback_discards_work(make_uow):
    uow = make_uow()
    env = await uow.begin()
    cmd = capture_cmd()
    await handlers.capture_story_basic_details(env, cmd)
    await uow.rollback()
    await uow.commit()  # nothing left to commit

    env = await make_uow().begin()
    assert not await env.store.exists(cmd.id)


async def test_commit_and_rollback_without_begin_are_no_ops(make_uow):
    uow = make_uow()

    await uow.commit()
    await uow.rollback()
    await uow.close()

    assert not uow.started


async def test_unit_of_work_begins_once(make_uow):
    uow = make_uow()
    await uow.begin()

    with pytest.raises(RuntimeError):
        await uow.begin()


async def test_unauthorized_commands_write_nothing(make_uow):
    uow = make_uow(roles=())
    env = await uow.begin()
    cmd = capture_cmd()
    await handlers.capture_story_basic_details(env, cmd)
    await uow.commit()

    env = await make_uow().begin()
    assert not await env.store.exists(cmd.id)
    assert await env.store.get_domain_events(cmd.id) == []


async def test_revising_missing_row_is_fatal(env):
    event = StoryBasicDetailsRevised(uuid.uuid4(), NOW, "title", None)

    with pytest.raises(InconsistentStateError):
        await env.store.apply_event(event)


async def test_removing_missing_task_is_fatal(env):
    cmd = capture_cmd()
    await handlers.capture_story_basic_details(env, cmd)

    with pytest.raises(InconsistentStateError):
        await env.store.apply_event(TaskRemoved(cmd.id, NOW, uuid.uuid4()))


async def test_get_by_id_of_missing_story_is_none(env):
    assert await env.store.get_by_id(uuid.uuid4()) is None


async def test_migrations_apply_once(database, null_logger):
    # The fixture already migrated this database.
    assert await apply_migrations(database, null_logger) == []


async def test_migrations_on_fresh_database(tmp_path, null_logger):
    database = Database(tmp_path / "fresh.db")

    assert await apply_migrations(database, null_logger) == [m[0] for m in MIGRATIONS]
    assert await apply_migrations(database, null_logger) == []


async def test_cancelled_handler_leaves_nothing_committed(make_uow):
    uow = make_uow()
    env = await uow.begin()
    started = asyncio.Event()
    apply_event = env.store.apply_event

    async def stalled_apply_event(event):
        await apply_event(event)
        started.set()
        await asyncio.Event().wait()

    env.store.apply_event = stalled_apply_event
    cmd = capture_cmd()
    running = asyncio.create_task(handlers.capture_story_basic_details(env, cmd))
    await started.wait()
    running.cancel()

    with pytest.raises(asyncio.CancelledError):
        await running
    await uow.rollback()

    env = await make_uow().begin()
    assert not await env.store.exists(cmd.id)


async def capture_in_new_unit_of_work(make_uow, cmd):
    uow = make_uow()
    env = await uow.begin()
    result = await handlers.capture_story_basic_details(env, cmd)
    if result == Ok(cmd.id):
        await uow.commit()
    return result


async def test_second_writer_waits_for_commit_then_sees_duplicate(make_uow):
    first = make_uow()
    env = await first.begin()
    cmd = capture_cmd()
    assert await handlers.capture_story_basic_details(env, cmd) == Ok(cmd.id)

    second = asyncio.create_task(capture_in_new_unit_of_work(make_uow, cmd))
    await asyncio.sleep(0.3)
    assert not second.done()

    await first.commit()

    assert await asyncio.wait_for(second, timeout=5) == DuplicateStory(cmd.id)


async def test_second_writer_proceeds_after_rollback(make_uow):
    first = make_uow()
    env = await first.begin()
    cmd = capture_cmd()
    await handlers.capture_story_basic_details(env, cmd)

    second = asyncio.create_task(capture_in_new_unit_of_work(make_uow, cmd))
    await asyncio.sleep(0.3)
    assert not second.done()

    await first.rollback()

    assert await asyncio.wait_for(second, timeout=5) == Ok(cmd.id)
    env = await make_uow().begin()
    assert await env.store.exists(cmd.id)


async def test_concurrent_captures_of_distinct_stories_both_succeed(make_uow):
    a, b = capture_cmd(), capture_cmd()

    results = await asyncio.gather(
        capture_in_new_unit_of_work(make_uow, a),
        capture_in_new_unit_of_work(make_uow, b),
    )

    assert results == [Ok(a.id), Ok(b.id)]
    env = await make_uow().begin()
    assert await env.store.exists(a.id)
    assert await env.store.exists(b.id)
