import pytest

from conftest import make_content
from story_localizer.chunker import chunk_text, paragraphs
from story_localizer.errors import SceneSplitError
from story_localizer.models import MediaStatus
from story_localizer.scenes import (
    SceneSplitOptions,
    align_original,
    estimate_duration,
    evenly_spaced,
    image_budget,
    segment,
    split_scenes,
)


def test_chunks_keep_paragraphs_whole_and_in_order():
    content = "\n\n".join(f"Paragraph {i} " + "word " * 30 for i in range(10))
    chunks = chunk_text(content, 400)

    assert len(chunks) > 1
    assert all(len(c) <= 400 for c in chunks)
    rejoined = [p for c in chunks for p in paragraphs(c)]
    assert rejoined == paragraphs(content)


@pytest.mark.parametrize("budget", [50, 300, 1000, 5000])
def test_chunking_is_idempotent(budget):
    chunks = chunk_text(make_content(30), budget)

    assert chunk_text("\n\n".join(chunks), budget) == chunks
    for chunk in chunks:
        assert chunk_text(chunk, budget) == [chunk]


def test_oversized_paragraph_becomes_its_own_chunk():
    big = "x" * 500
    chunks = chunk_text(f"short one\n\n{big}\n\nshort two", 100)
    assert chunks == ["short one", big, "short two"]


def test_chunk_text_edge_cases():
    assert chunk_text("", 100) == []
    assert chunk_text("  \n\n  ", 100) == []
    with pytest.raises(ValueError):
        chunk_text("text", 0)


def test_estimate_duration():
    assert estimate_duration(" ".join(["word"] * 150)) == 60.0
    assert estimate_duration("") == 0.0
    # 40 unspaced characters at 4 characters per second
    assert estimate_duration("山" * 40) == 10.0


def test_segment_merges_short_trailing_scene():
    long_sentence = " ".join(["word"] * 40) + "."
    scenes = segment(f"{long_sentence}\n\nFin.", avg_seconds=15)
    assert len(scenes) == 1
    assert scenes[0].endswith("Fin.")


def test_evenly_spaced():
    picked = evenly_spaced(list(range(10)), 3)
    assert len(picked) == 3
    assert picked[0] == 0 and picked[-1] == 9
    assert evenly_spaced([1, 2], 5) == [1, 2]
    assert evenly_spaced([4, 5, 6], 1) == [4]
    assert evenly_spaced([], 3) == []


def test_image_budget_scales_with_short_stories():
    opts = SceneSplitOptions(total_images=20, seconds_per_image=30)
    assert image_budget(40, 1200, opts) == 20
    assert image_budget(40, 300, opts) == 10
    assert image_budget(3, 1200, opts) == 3
    assert image_budget(5, 5, opts) == 1
    assert image_budget(0, 0, opts) == 0


def test_split_scenes_numbers_and_times():
    content = make_content()
    split = split_scenes("s1", content, content, SceneSplitOptions())
    scenes = split.scenes

    assert [s.scene_number for s in scenes] == list(range(1, len(scenes) + 1))
    assert scenes[0].start_time == 0
    for prev, cur in zip(scenes, scenes[1:]):
        assert cur.start_time == pytest.approx(prev.start_time + prev.estimated_duration, abs=0.05)
    assert split.estimated_total_duration == pytest.approx(sum(s.estimated_duration for s in scenes), abs=0.05)


def test_split_scenes_image_selection():
    content = make_content(paragraph_count=30)
    opts = SceneSplitOptions(total_images=8, first_window_images=3, first_window_seconds=60, seconds_per_image=30)
    split = split_scenes("s1", content, content, opts)
    scenes = split.scenes
    flagged = [s for s in scenes if s.has_image]

    assert split.total_images == len(flagged) <= 8
    assert [s.image_index for s in flagged] == list(range(1, len(flagged) + 1))
    assert split.first_window_images == 3
    assert sum(1 for s in flagged if s.is_first_window) == 3
    assert scenes[0].has_image
    for scene in scenes:
        expected = MediaStatus.pending if scene.has_image else MediaStatus.skipped
        assert scene.image_status == expected
        assert scene.audio_status == MediaStatus.pending


def test_split_scenes_rejects_empty_text():
    with pytest.raises(SceneSplitError):
        split_scenes("s1", "   ", "original", SceneSplitOptions())


def test_align_original_keeps_every_sentence_once():
    original = "One. Two. Three.\n\nFour. Five. Six."
    adapted = ["Un. Deux. Trois.", "Quatre. Cinq. Six."]
    aligned = align_original(original, adapted)

    assert len(aligned) == 2
    assert " ".join(aligned) == "One. Two. Three. Four. Five. Six."
    assert aligned[0].startswith("One.")
    assert aligned[1].endswith("Six.")
