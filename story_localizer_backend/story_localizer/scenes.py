"""
Scene splitting: turns adapted story text into timed narration units and
decides which of them get an illustration.
"""
import logging, re
from typing import List
from pydantic import BaseModel
from .chunker import paragraphs
from .errors import SceneSplitError
from .models import MediaStatus, Scene

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?…])\s+|(?<=[。！？])")
# Scripts written without spaces between words
_UNSPACED = re.compile(r"[\u0e00-\u0e7f\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff]")
UNSPACED_CHARS_PER_SECOND = 4.0


class SceneSplitOptions(BaseModel):
    total_images: int = 20
    first_window_images: int = 6
    first_window_seconds: int = 180
    avg_scene_seconds: int = 15
    seconds_per_image: int = 30
    words_per_minute: int = 150


class SceneSplit(BaseModel):
    scenes: List[Scene]
    total_images: int
    first_window_images: int
    estimated_total_duration: float


def estimate_duration(text: str, words_per_minute: int = 150) -> float:
    """Narration time in seconds for ``text``."""
    text = (text or "").strip()
    if not text:
        return 0.0
    compact = re.sub(r"\s+", "", text)
    if compact and len(_UNSPACED.findall(compact)) / len(compact) > 0.3:
        return round(len(compact) / UNSPACED_CHARS_PER_SECOND, 2)
    return round(len(text.split()) / words_per_minute * 60, 2)


def split_sentences(paragraph: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_END.split(paragraph) if s and s.strip()]


def segment(content: str, avg_seconds: float, words_per_minute: int = 150) -> List[str]:
    """Group sentences into scene texts of roughly ``avg_seconds`` narration.

    A scene closes once it reaches the average, or at a paragraph end when it
    already holds at least half of it. A trailing scene shorter than a
    quarter of the average is merged into the previous one.
    """
    scenes: List[str] = []
    parts: List[str] = []
    frag: List[str] = []
    duration = 0.0

    def flush():
        nonlocal parts, frag, duration
        if frag:
            parts.append(" ".join(frag))
            frag = []
        if parts:
            scenes.append("\n\n".join(parts))
        parts = []
        duration = 0.0

    for para in paragraphs(content):
        for sentence in split_sentences(para):
            frag.append(sentence)
            duration += estimate_duration(sentence, words_per_minute)
            if duration >= avg_seconds:
                flush()
        if frag:
            parts.append(" ".join(frag))
            frag = []
        if parts and duration >= avg_seconds / 2:
            flush()

    if parts:
        if scenes and duration < avg_seconds / 4:
            scenes[-1] = scenes[-1] + "\n\n" + "\n\n".join(parts)
        else:
            flush()
    return scenes


def evenly_spaced(indices: List[int], k: int) -> List[int]:
    if k <= 0 or not indices:
        return []
    if k >= len(indices):
        return list(indices)
    if k == 1:
        return [indices[0]]
    step = (len(indices) - 1) / (k - 1)
    return [indices[round(j * step)] for j in range(k)]


def image_budget(scene_count: int, total_duration: float, opts: SceneSplitOptions) -> int:
    budget = min(opts.total_images, scene_count)
    expected = opts.total_images * opts.seconds_per_image
    if expected > 0 and total_duration < expected:
        scaled = round(opts.total_images * total_duration / expected)
        budget = min(budget, max(1, scaled))
    return max(budget, 0) if scene_count else 0


def align_original(original: str, adapted_scenes: List[str]) -> List[str]:
    """Spread the original sentences over scenes by adapted length ratio."""
    sentences = [s for para in paragraphs(original) for s in split_sentences(para)]
    result: List[List[str]] = [[] for _ in adapted_scenes]
    if not sentences or not adapted_scenes:
        return ["" for _ in adapted_scenes]
    total_adapted = sum(len(s) for s in adapted_scenes) or 1
    bounds, acc = [], 0
    for text in adapted_scenes:
        acc += len(text)
        bounds.append(acc / total_adapted)
    total_orig = sum(len(s) for s in sentences) or 1
    consumed, j = 0, 0
    for sentence in sentences:
        midpoint = (consumed + len(sentence) / 2) / total_orig
        while j < len(bounds) - 1 and midpoint > bounds[j]:
            j += 1
        result[j].append(sentence)
        consumed += len(sentence)
    return [" ".join(r) for r in result]


def split_scenes(story_id: str, adapted: str, original: str, opts: SceneSplitOptions) -> SceneSplit:
    texts = segment(adapted, opts.avg_scene_seconds, opts.words_per_minute)
    if not texts:
        raise SceneSplitError("Adapted content produced no scenes")
    originals = align_original(original, texts)

    scenes: List[Scene] = []
    start = 0.0
    for number, (text, orig) in enumerate(zip(texts, originals), start=1):
        duration = estimate_duration(text, opts.words_per_minute)
        scenes.append(Scene(
            story_id=story_id,
            scene_number=number,
            text_adapted=text,
            text_original=orig,
            estimated_duration=duration,
            start_time=round(start, 2),
            is_first_window=start < opts.first_window_seconds,
        ))
        start += duration

    total_duration = round(start, 2)
    budget = image_budget(len(scenes), total_duration, opts)
    window = [i for i, s in enumerate(scenes) if s.is_first_window]
    rest = [i for i, s in enumerate(scenes) if not s.is_first_window]
    first_pick = evenly_spaced(window, min(opts.first_window_images, budget, len(window)))
    rest_pick = evenly_spaced(rest, min(budget - len(first_pick), len(rest)))

    flagged = sorted(set(first_pick) | set(rest_pick))
    for image_index, i in enumerate(flagged, start=1):
        scenes[i].has_image = True
        scenes[i].image_index = image_index
    for scene in scenes:
        if not scene.has_image:
            scene.image_status = MediaStatus.skipped

    logger.info(
        f"Story {story_id}: {len(scenes)} scenes, {len(flagged)} images "
        f"({len(first_pick)} in first {opts.first_window_seconds}s), ~{total_duration:.0f}s narration"
    )
    return SceneSplit(
        scenes=scenes,
        total_images=len(flagged),
        first_window_images=len(first_pick),
        estimated_total_duration=total_duration,
    )
