import asyncio, random

import pytest

from story_localizer.kv_storage import InMemoryStoryStore
from story_localizer.models import LogStatus, Story, StoryStatus
from story_localizer.progress import STAGES, ProgressTracker


def _story(**fields):
    return Story(title="Story", content="text", target_language="fr", target_country="France", **fields)


def test_concurrent_advances_keep_the_maximum():
    async def scenario():
        store = InMemoryStoryStore()
        story = await store.create_story(_story(status=StoryStatus.processing))
        tracker = ProgressTracker(store, story.id)
        values = list(range(1, 90))
        random.Random(7).shuffle(values)
        await asyncio.gather(*(tracker.advance(v) for v in values))
        await tracker.advance(40, "Late update")
        return await store.require_story(story.id)

    story = asyncio.run(scenario())
    assert story.progress == 89
    assert story.current_step == "Late update"


def test_terminal_story_ignores_progress():
    async def scenario():
        store = InMemoryStoryStore()
        story = await store.create_story(_story(status=StoryStatus.processing))
        tracker = ProgressTracker(store, story.id)
        await tracker.advance(50)
        failed = await tracker.fail("boom")
        await tracker.advance(80, "Too late")
        return failed, await store.require_story(story.id)

    failed, story = asyncio.run(scenario())
    assert failed.status == StoryStatus.failed
    assert story.progress == 50
    assert story.current_step == "Failed"
    assert story.error_message == "boom"


def test_complete_only_from_processing():
    async def scenario():
        store = InMemoryStoryStore()
        story = await store.create_story(_story())
        tracker = ProgressTracker(store, story.id)
        not_started = await tracker.complete()
        await store.transition_status(story.id, [StoryStatus.created], StoryStatus.processing)
        done = await tracker.complete(archive_url="file:///tmp/a.zip")
        again = await tracker.fail("late failure")
        return not_started, done, again

    not_started, done, again = asyncio.run(scenario())
    assert not_started.status == StoryStatus.created
    assert done.status == StoryStatus.completed
    assert done.progress == 100
    assert done.archive_url == "file:///tmp/a.zip"
    assert again.status == StoryStatus.completed


def test_stage_logs_and_bands():
    async def scenario():
        store = InMemoryStoryStore()
        story = await store.create_story(_story(status=StoryStatus.processing))
        tracker = ProgressTracker(store, story.id)
        async with tracker.stage("split_scenes", "Splitting scenes"):
            pass
        with pytest.raises(RuntimeError):
            async with tracker.stage("visual_prompts", "Writing prompts"):
                raise RuntimeError("llm down")
        return await store.require_story(story.id), await store.list_logs(story.id)

    story, logs = asyncio.run(scenario())
    # the failed stage only reaches its start value
    assert story.progress == STAGES["visual_prompts"][0]
    assert [(e.step, e.status) for e in logs] == [
        ("split_scenes", LogStatus.started),
        ("split_scenes", LogStatus.completed),
        ("visual_prompts", LogStatus.started),
        ("visual_prompts", LogStatus.failed),
    ]
    assert logs[1].duration is not None
    assert logs[3].metadata == {"error_type": "RuntimeError"}


def test_media_units_drive_progress():
    async def scenario():
        store = InMemoryStoryStore()
        story = await store.create_story(_story(status=StoryStatus.processing))
        tracker = ProgressTracker(store, story.id)
        await tracker.begin_media(4)
        await asyncio.gather(*(tracker.media_unit_done() for _ in range(4)))
        return await store.require_story(story.id)

    story = asyncio.run(scenario())
    assert story.media_units_done == 4
    assert story.progress == STAGES["media"][1]
    assert story.current_step == "Generating media (4/4)"
