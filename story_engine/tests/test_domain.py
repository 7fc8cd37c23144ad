import uuid
from datetime import datetime, timedelta, timezone

import pytest

from story_engine.domain import (
    Story,
    StoryBasicDetailsCaptured,
    TaskBasicDetailsAddedToStory,
    TaskRemoved,
    validate_description,
    validate_title,
)
from story_engine.paging import decode_cursor, encode_cursor

NOW = datetime(2023, 1, 1, 6, tzinfo=timezone.utc)


def test_capture_returns_story_and_event():
    story_id = uuid.uuid4()

    story, event = Story.capture(story_id, "  title ", None, NOW)

    assert story.title == "title"
    assert story.updated_at is None
    assert event == StoryBasicDetailsCaptured(story_id, NOW, "title", None)
    assert event.event_type == "StoryBasicDetailsCaptured"
    assert event.aggregate_type == "Story"


def test_tasks_keep_insertion_order():
    story, _ = Story.capture(uuid.uuid4(), "title", None, NOW)
    first, second = uuid.uuid4(), uuid.uuid4()

    event = story.add_task(first, "a", None, NOW)
    story.add_task(second, "b", None, NOW)

    assert isinstance(event, TaskBasicDetailsAddedToStory)
    assert event.aggregate_id == story.id
    assert [t.id for t in story.tasks] == [first, second]


def test_task_cannot_be_added_twice():
    story, _ = Story.capture(uuid.uuid4(), "title", None, NOW)
    task_id = uuid.uuid4()
    story.add_task(task_id, "a", None, NOW)

    with pytest.raises(ValueError):
        story.add_task(task_id, "a", None, NOW)


def test_revise_sets_updated_at():
    story, _ = Story.capture(uuid.uuid4(), "title", "description", NOW)
    later = NOW + timedelta(seconds=1)

    story.revise("title1", None, later)

    assert story.title == "title1"
    assert story.description is None
    assert story.updated_at == later


def test_remove_task():
    story, _ = Story.capture(uuid.uuid4(), "title", None, NOW)
    task_id = uuid.uuid4()
    story.add_task(task_id, "a", None, NOW)

    event = story.remove_task(task_id, NOW)

    assert event == TaskRemoved(story.id, NOW, task_id)
    assert story.tasks == []


def test_title_rules():
    errors = []
    validate_title("title", "", errors)
    validate_title("title", "x" * 100, errors)
    validate_title("other", "x" * 101, errors)

    assert [e.field for e in errors] == ["title", "other"]


def test_description_is_optional():
    errors = []
    validate_description("description", None, errors)
    validate_description("description", "x" * 1000, errors)

    assert errors == []


def test_cursor_is_opaque_but_decodable():
    key = ("2023-01-01T06:00:00.000000+00:00", str(uuid.uuid4()))

    cursor = encode_cursor(key)

    assert key[1] not in cursor
    assert decode_cursor(cursor) == key
    assert encode_cursor(None) is None


@pytest.mark.parametrize("cursor", ["", "!!!", "bm90IGpzb24", "WzEsIDJd"])
def test_malformed_cursor(cursor):
    assert decode_cursor(cursor) is None
