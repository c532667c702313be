import asyncio, logging
from typing import Awaitable, Callable, List, Optional
from pydantic import BaseModel
from .errors import AdaptationError, LengthMismatchError
from .language import language_name
from .models import Story
from .prompts import (
    ADAPT_SYSTEM_PROMPT,
    CHUNK_USER_TEMPLATE,
    SIMPLE_TRANSLATE_SYSTEM_PROMPT,
    TITLE_USER_TEMPLATE,
    TRANSLATE_SYSTEM_PROMPT,
)
from .retry import RetryPolicy, call_with_retry
from .scenes import estimate_duration
from .settings import PipelineConfig

logger = logging.getLogger(__name__)


class AdaptationResult(BaseModel):
    title: str
    content: str
    chunk_count: int
    original_length: int
    adapted_length: int


def _policy(config: PipelineConfig) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=config.llm_max_attempts,
        base_delay=config.llm_base_delay,
        max_delay=config.retry_max_delay,
        timeout=config.provider_timeout,
    )


def check_length(source: str, adapted: str, config: PipelineConfig) -> float:
    """Compare narration length of the adapted text against its source."""
    src = estimate_duration(source, config.words_per_minute)
    out = estimate_duration(adapted, config.words_per_minute)
    if src <= 0:
        return 1.0
    ratio = out / src
    if not config.adaptation_min_ratio <= ratio <= config.adaptation_max_ratio:
        raise LengthMismatchError(ratio, config.adaptation_min_ratio, config.adaptation_max_ratio)
    return ratio


async def adapt_title(llm, story: Story, config: PipelineConfig) -> str:
    target = language_name(story.target_language)
    system_template = TRANSLATE_SYSTEM_PROMPT if story.translation_only else ADAPT_SYSTEM_PROMPT
    system = system_template.format(target_language=target, target_country=story.target_country)
    user = TITLE_USER_TEMPLATE.format(
        mode="Translate" if story.translation_only else "Translate and adapt",
        target_language=target,
        target_country=story.target_country,
        title=story.title,
    )

    async def _call():
        out = await llm.complete(system, user, model=story.options.llm_model, temperature=0.5)
        return out.strip().strip('"').strip()

    return await call_with_retry(_call, _policy(config), f"title adaptation for story {story.id}")


async def adapt_story(
    llm,
    story: Story,
    chunks: List[str],
    config: PipelineConfig,
    on_chunk: Optional[Callable[[int, int], Awaitable[None]]] = None,
) -> AdaptationResult:
    """Adapt every chunk and reassemble them in source order.

    Chunks run concurrently up to ``config.adaptation_concurrency``. Any
    chunk that exhausts its retries fails the whole stage.
    """
    if not chunks:
        raise AdaptationError("Nothing to adapt: story has no paragraphs")

    target = language_name(story.target_language)
    system_template = TRANSLATE_SYSTEM_PROMPT if story.translation_only else ADAPT_SYSTEM_PROMPT
    system = system_template.format(target_language=target, target_country=story.target_country)
    policy = _policy(config)
    sem = asyncio.Semaphore(max(1, config.adaptation_concurrency))
    total = len(chunks)
    done = 0
    lock = asyncio.Lock()

    try:
        title = await adapt_title(llm, story, config)
    except Exception as e:
        raise AdaptationError(f"Title adaptation failed: {e}") from e

    async def _one(index: int, chunk: str) -> str:
        nonlocal done
        user = CHUNK_USER_TEMPLATE.format(
            source_language=language_name(story.original_language),
            target_language=target,
            target_country=story.target_country,
            index=index + 1,
            total=total,
            title=story.title,
            chunk=chunk,
        )

        async def _call():
            out = await llm.complete(system, user, model=story.options.llm_model, temperature=0.7)
            ratio = check_length(chunk, out, config)
            logger.info(f"Story {story.id} chunk {index + 1}/{total} adapted (length ratio {ratio:.2f})")
            return out.strip()

        async with sem:
            try:
                result = await call_with_retry(_call, policy, f"chunk {index + 1}/{total} of story {story.id}")
            except Exception as e:
                raise AdaptationError(f"Adaptation of chunk {index + 1}/{total} failed: {e}") from e
        if on_chunk is not None:
            async with lock:
                done += 1
                await on_chunk(done, total)
        return result

    tasks = [asyncio.create_task(_one(i, c)) for i, c in enumerate(chunks)]
    try:
        adapted = await asyncio.gather(*tasks)
    except Exception:
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    content = "\n\n".join(adapted)
    original_length = sum(len(c) for c in chunks)
    logger.info(f"Story {story.id} adapted: {original_length} -> {len(content)} chars in {total} chunks")
    return AdaptationResult(
        title=title,
        content=content,
        chunk_count=total,
        original_length=original_length,
        adapted_length=len(content),
    )


async def translate_text(llm, text: str, target_language: str, policy: RetryPolicy, model: Optional[str] = None) -> str:
    system = SIMPLE_TRANSLATE_SYSTEM_PROMPT.format(target_language=language_name(target_language))

    async def _call():
        return (await llm.complete(system, text, model=model, temperature=0.3)).strip()

    return await call_with_retry(_call, policy, f"translation to {target_language}")
