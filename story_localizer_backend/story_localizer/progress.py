import logging, time
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
from .models import LogStatus, ProcessLogEntry, Story, StoryStatus, utcnow

logger = logging.getLogger(__name__)

# (start, end) progress for each stage
STAGES = {
    "detect_language": (2, 5),
    "adapt": (10, 30),
    "split_scenes": (35, 50),
    "visual_prompts": (50, 60),
    "hooks": (60, 63),
    "media": (65, 95),
    "secondary_translation": (95, 97),
    "assemble": (97, 99),
}


class ProgressTracker:
    """Single write path for a story's status, progress and step label.

    Every method awaits the store write before returning. Progress writes go
    through the store's max-merge so concurrent updates never move it back.
    """

    def __init__(self, store, story_id: str):
        self.store = store
        self.story_id = story_id
        self._media_band = STAGES["media"]
        self._media_total = 0

    async def advance(self, progress: int, step: Optional[str] = None) -> int:
        return await self.store.advance_progress(self.story_id, progress, step)

    async def log(
        self,
        step: str,
        status: LogStatus,
        message: str = "",
        metadata: Optional[Dict[str, Any]] = None,
        duration: Optional[float] = None,
    ) -> None:
        await self.store.append_log(ProcessLogEntry(
            story_id=self.story_id,
            step=step,
            status=status,
            message=message,
            metadata=metadata,
            duration=duration,
        ))

    @asynccontextmanager
    async def stage(self, step: str, label: str):
        start_pct, end_pct = STAGES[step]
        await self.advance(start_pct, label)
        await self.log(step, LogStatus.started, label)
        logger.info(f"Story {self.story_id}: {label}")
        started = time.monotonic()
        try:
            yield
        except Exception as e:
            elapsed = round(time.monotonic() - started, 3)
            await self.log(step, LogStatus.failed, str(e), {"error_type": type(e).__name__}, elapsed)
            raise
        elapsed = round(time.monotonic() - started, 3)
        await self.advance(end_pct)
        await self.log(step, LogStatus.completed, f"{label} done", duration=elapsed)

    async def begin_media(self, total_units: int, already_done: int = 0) -> None:
        self._media_total = total_units
        await self.store.update_story(self.story_id, media_units_total=total_units, media_units_done=already_done)

    async def media_unit_done(self) -> int:
        """Record one terminal media unit and recompute progress."""
        done = await self.store.increment(self.story_id, "media_units_done")
        total = self._media_total or 1
        start, end = self._media_band
        pct = start + int((end - start) * min(done, total) / total)
        await self.advance(pct, f"Generating media ({min(done, total)}/{total})")
        return done

    async def complete(self, **fields) -> Story:
        ok, story = await self.store.transition_status(
            self.story_id,
            [StoryStatus.processing],
            StoryStatus.completed,
            progress=100,
            current_step="Completed",
            completed_at=utcnow(),
            **fields,
        )
        if ok:
            await self.log("complete", LogStatus.completed, "Story processing completed")
            logger.info(f"Story {self.story_id} completed")
        return story

    async def fail(self, message: str) -> Story:
        ok, story = await self.store.transition_status(
            self.story_id,
            [StoryStatus.created, StoryStatus.queued, StoryStatus.processing],
            StoryStatus.failed,
            error_message=message,
            current_step="Failed",
        )
        if ok:
            await self.log("pipeline", LogStatus.failed, message)
            logger.error(f"Story {self.story_id} failed: {message}")
        return story
