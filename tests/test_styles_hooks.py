import asyncio

import pytest

from conftest import FakeLLM, fast_config
from story_localizer.hooks import add_hooks, determine_hook_placements, fallback_hook
from story_localizer.kv_storage import InMemoryStoryStore
from story_localizer.models import Scene, Story, VisualStyle
from story_localizer.styles import (
    BUILTIN_STYLES,
    StyleNotFoundError,
    compose_prompt,
    create_style,
    resolve_style,
    set_default_style,
)


def test_compose_prompt():
    style = VisualStyle(name="Test", technical_prefix="35mm film", style_suffix="--no text")
    assert compose_prompt("A harbour at dawn.", style) == "35mm film. A harbour at dawn. --no text"
    assert compose_prompt("A harbour", None) == "A harbour"


def test_only_one_default_style_per_user():
    async def scenario():
        store = InMemoryStoryStore()
        first = await create_style(store, VisualStyle(id="a", user_id="u1", name="A", is_default=True))
        await create_style(store, VisualStyle(id="b", user_id="u1", name="B"))
        await create_style(store, VisualStyle(id="c", user_id="u2", name="C", is_default=True))
        await set_default_style(store, "u1", "b")
        return first, await store.list_styles("u1"), await store.list_styles("u2")

    first, styles, other = asyncio.run(scenario())
    assert first.is_default
    assert [s.id for s in styles if s.is_default] == ["b"]
    assert other[0].is_default


def test_set_default_unknown_style():
    async def scenario():
        await set_default_style(InMemoryStoryStore(), "u1", "missing")

    with pytest.raises(StyleNotFoundError):
        asyncio.run(scenario())


def test_resolve_style_fallbacks():
    async def scenario():
        store = InMemoryStoryStore()
        await create_style(store, VisualStyle(id="mine", user_id="u1", name="Mine", is_default=True))
        return (
            await resolve_style(store, "Vintage/Sepia", "u1"),
            await resolve_style(store, None, "u1"),
            await resolve_style(store, "nope", None),
        )

    named, user_default, fallback = asyncio.run(scenario())
    assert named.id == "vintage"
    assert user_default.id == "mine"
    assert fallback == BUILTIN_STYLES["cinematic"]


def test_hook_placements():
    assert determine_hook_placements(0) == {}
    assert determine_hook_placements(1) == {1: "outro"}
    assert determine_hook_placements(3) == {1: "intro", 3: "outro"}
    placements = determine_hook_placements(10)
    assert placements[2] == "intro"
    assert placements[10] == "outro"
    assert set(placements.values()) == {"intro", "subscribe", "like", "comment", "outro"}


def _scenes(n):
    return [Scene(story_id="s", scene_number=i, text_adapted=f"Scene text {i}.") for i in range(1, n + 1)]


def test_hook_failures_use_fallback_text():
    story = Story(title="T", content="c", target_language="fr", target_country="France")
    scenes = asyncio.run(add_hooks(FakeLLM(fail_hooks=True), story, _scenes(3), fast_config()))
    assert scenes[0].hook_text == fallback_hook("intro", "fr")
    assert scenes[2].hook_text == fallback_hook("outro", "fr")
    assert scenes[1].hook_text is None
    assert fallback_hook("outro", "ja") == fallback_hook("outro", "en")
