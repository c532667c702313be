"""
Per-scene media fan-out.

Scenes run on a bounded worker pool; inside a scene the image and audio
tracks run concurrently. A provider failure is recorded on the scene's
track and never aborts sibling scenes. Storage failures are fatal.
"""
import asyncio, json, logging
from typing import Dict, List, Optional
from pydantic import BaseModel, Field
from .errors import MaxRetriesExceededError, SceneFailureThresholdError, StorageError
from .models import TERMINAL_MEDIA, MediaStatus, Scene, Story, VisualStyle
from .progress import ProgressTracker
from .retry import RetryPolicy, call_with_retry
from .settings import PipelineConfig

logger = logging.getLogger(__name__)


def image_path(story_id: str, scene: Scene) -> str:
    return f"stories/{story_id}/images/scene-{scene.scene_number}-img-{scene.image_index or 1}.png"


def audio_path(story_id: str, scene: Scene, extension: str = "mp3") -> str:
    return f"stories/{story_id}/audio/scene-{scene.scene_number}.{extension}"


def metadata_path(story_id: str, scene: Scene) -> str:
    return f"stories/{story_id}/metadata/scene-{scene.scene_number}.json"


class FanOutSummary(BaseModel):
    scenes_total: int = 0
    images_total: int = 0
    images_failed: List[int] = Field(default_factory=list)
    audio_total: int = 0
    audio_failed: List[int] = Field(default_factory=list)
    degraded: Dict[int, str] = Field(default_factory=dict)
    actual_duration: float = 0.0

    @classmethod
    def from_scenes(cls, scenes: List[Scene]) -> "FanOutSummary":
        summary = cls(scenes_total=len(scenes))
        for scene in scenes:
            reasons = []
            if scene.has_image:
                summary.images_total += 1
                if scene.image_status == MediaStatus.failed:
                    summary.images_failed.append(scene.scene_number)
                    reasons.append(f"image: {scene.image_error or 'failed'}")
            summary.audio_total += 1
            if scene.audio_status == MediaStatus.failed:
                summary.audio_failed.append(scene.scene_number)
                reasons.append(f"audio: {scene.audio_error or 'failed'}")
            if reasons:
                summary.degraded[scene.scene_number] = "; ".join(reasons)
            summary.actual_duration += scene.actual_duration or 0.0
        summary.actual_duration = round(summary.actual_duration, 2)
        return summary

    def enforce(self, tolerance: float) -> None:
        """Fail when more than ``tolerance`` of a media track is missing."""
        if self.images_total and len(self.images_failed) / self.images_total > tolerance:
            raise SceneFailureThresholdError("image", len(self.images_failed), self.images_total, tolerance)
        if self.audio_total and len(self.audio_failed) / self.audio_total > tolerance:
            raise SceneFailureThresholdError("audio", len(self.audio_failed), self.audio_total, tolerance)


class SceneFanOut:
    def __init__(self, store, objects, images, speech, tracker: ProgressTracker, config: PipelineConfig):
        self.store = store
        self.objects = objects
        self.images = images
        self.speech = speech
        self.tracker = tracker
        self.config = config
        self.media_policy = RetryPolicy(
            max_attempts=config.media_max_attempts,
            base_delay=config.media_base_delay,
            max_delay=config.retry_max_delay,
            timeout=config.provider_timeout,
        )
        self.upload_policy = RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=5.0, timeout=config.provider_timeout)

    async def run(self, story: Story, scenes: List[Scene], style: Optional[VisualStyle] = None) -> FanOutSummary:
        total = sum(1 for s in scenes if s.has_image) + len(scenes)
        # Tracks finished by an earlier delivery are not regenerated
        already = sum(1 for s in scenes if s.has_image and s.image_status in TERMINAL_MEDIA)
        already += sum(1 for s in scenes if s.audio_status in TERMINAL_MEDIA)
        await self.tracker.begin_media(total, already)
        logger.info(
            f"Story {story.id}: generating {total} media units for {len(scenes)} scenes "
            f"(max {self.config.max_concurrent_scenes} in flight)"
        )
        sem = asyncio.Semaphore(max(1, self.config.max_concurrent_scenes))

        async def _bounded(scene: Scene):
            async with sem:
                await self._process_scene(story, scene, style)

        tasks = [asyncio.create_task(_bounded(s)) for s in scenes]
        try:
            await asyncio.gather(*tasks)
        except Exception:
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        final = await self.store.get_scenes(story.id)
        summary = FanOutSummary.from_scenes(final)
        logger.info(
            f"Story {story.id}: fan-out done, {len(summary.images_failed)}/{summary.images_total} images "
            f"and {len(summary.audio_failed)}/{summary.audio_total} audio tracks failed"
        )
        return summary

    async def _process_scene(self, story: Story, scene: Scene, style: Optional[VisualStyle]):
        tracks = []
        if scene.has_image and scene.image_status not in TERMINAL_MEDIA:
            tracks.append(self._image_track(story, scene, style))
        if scene.audio_status not in TERMINAL_MEDIA:
            tracks.append(self._audio_track(story, scene))
        if not tracks:
            return
        await asyncio.gather(*tracks)
        await self._write_metadata(story, scene.scene_number)

    async def _upload(self, path: str, data: bytes, content_type: str) -> str:
        try:
            return await call_with_retry(
                lambda: self.objects.put(path, data, content_type), self.upload_policy, f"upload {path}"
            )
        except MaxRetriesExceededError as e:
            raise StorageError(f"Upload of {path} failed: {e.last_error}") from e

    async def _image_track(self, story: Story, scene: Scene, style: Optional[VisualStyle]):
        n = scene.scene_number
        await self.store.update_scene(story.id, n, image_status=MediaStatus.processing)
        attempts = 0

        async def _generate():
            nonlocal attempts
            attempts += 1
            return await self.images.generate(
                scene.visual_prompt or scene.text_adapted[:500],
                style=style,
                aspect_ratio=story.options.aspect_ratio,
                seed=story.options.seed,
            )

        try:
            data = await call_with_retry(_generate, self.media_policy, f"image for scene {n} of story {story.id}")
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Story {story.id} scene {n}: image failed after {attempts} attempts: {e}")
            await self.store.update_scene(
                story.id, n, image_status=MediaStatus.failed, image_error=str(e), image_attempts=attempts
            )
            await self.tracker.media_unit_done()
            return

        url = await self._upload(image_path(story.id, scene), data, "image/png")
        await self.store.update_scene(
            story.id, n, image_status=MediaStatus.completed, image_url=url, image_error=None, image_attempts=attempts
        )
        await self.tracker.media_unit_done()

    async def _audio_track(self, story: Story, scene: Scene):
        n = scene.scene_number
        await self.store.update_scene(story.id, n, audio_status=MediaStatus.processing)
        attempts = 0

        async def _synthesize():
            nonlocal attempts
            attempts += 1
            return await self.speech.synthesize(scene.narration_text, story.options, story.target_language)

        try:
            result = await call_with_retry(_synthesize, self.media_policy, f"audio for scene {n} of story {story.id}")
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Story {story.id} scene {n}: audio failed after {attempts} attempts: {e}")
            await self.store.update_scene(
                story.id, n, audio_status=MediaStatus.failed, audio_error=str(e), audio_attempts=attempts
            )
            await self.tracker.media_unit_done()
            return

        url = await self._upload(audio_path(story.id, scene, result.extension), result.audio, result.content_type)
        await self.store.update_scene(
            story.id, n,
            audio_status=MediaStatus.completed,
            audio_url=url,
            audio_error=None,
            audio_attempts=attempts,
            actual_duration=result.duration,
        )
        await self.tracker.media_unit_done()

    async def _write_metadata(self, story: Story, scene_number: int):
        scene = await self.store.get_scene(story.id, scene_number)
        if scene is None:
            raise StorageError(f"Scene {scene_number} of story {story.id} not found")
        payload = json.dumps(scene.model_dump(mode="json"), ensure_ascii=False, indent=2).encode("utf-8")
        url = await self._upload(metadata_path(story.id, scene), payload, "application/json")
        await self.store.update_scene(story.id, scene_number, metadata_url=url)
