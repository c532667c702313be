import asyncio, logging
from typing import Optional
from langgraph.graph import StateGraph, END
from .adaptation import adapt_story, translate_text
from .archive import assemble_archive
from .chunker import chunk_text
from .errors import (
    AlreadyProcessingError,
    ArchiveNotFoundError,
    StoryAlreadyCompletedError,
    StoryNotReadyError,
    StoryTerminalError,
    ValidationError,
)
from .fanout import SceneFanOut
from .hooks import add_hooks
from .jobs import AsyncioJobQueue
from .language import detect_language
from .models import LogStatus, OrchestrationState, Story, StoryRequest, StoryStatus
from .progress import STAGES, ProgressTracker
from .retry import RetryPolicy
from .scenes import SceneSplitOptions, split_scenes
from .settings import PipelineConfig
from .styles import resolve_style
from .validation import validate_story_request
from .visuals import write_visual_prompts

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (StoryStatus.queued, StoryStatus.processing)


class StoryPipeline:
    """Runs stories through the processing graph.

    Collaborators are injected: ``store`` (StoryStore), ``objects``
    (ObjectStorage), ``llm``, ``images``, ``speech`` and the job ``queue``.
    """

    def __init__(self, store, objects, llm, images, speech, queue: Optional[AsyncioJobQueue] = None, config: Optional[PipelineConfig] = None):
        self.store = store
        self.objects = objects
        self.llm = llm
        self.images = images
        self.speech = speech
        self.config = config or PipelineConfig()
        self.queue = queue or AsyncioJobQueue()
        self.queue.bind(self.run)
        self.graph = build_graph(self)

    def tracker(self, story_id: str) -> ProgressTracker:
        return ProgressTracker(self.store, story_id)

    # --- graph nodes ---

    async def node_detect_language(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("detect_language", "Detecting language"):
            if story.original_language in ("", "unknown"):
                detection = detect_language(story.content)
                story = await self.store.update_story(
                    story.id, original_language=detection.language, language_confidence=detection.confidence
                )
                await tracker.log("detect_language", LogStatus.completed, f"Detected {detection.language}",
                                  {"confidence": detection.confidence})
        return {"story": story}

    async def node_adapt(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        label = "Translating story" if story.translation_only else "Adapting story"
        async with tracker.stage("adapt", label):
            chunks = chunk_text(story.content, self.config.chunk_size)
            start, end = STAGES["adapt"]

            async def on_chunk(done: int, total: int):
                await tracker.advance(start + int((end - start) * done / total), f"{label} ({done}/{total} parts)")

            result = await adapt_story(self.llm, story, chunks, self.config, on_chunk=on_chunk)
            story = await self.store.update_story(story.id, adapted_title=result.title, adapted_content=result.content)
        return {"story": story, "chunks": chunks}

    async def node_split_scenes(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("split_scenes", "Splitting scenes"):
            opts = SceneSplitOptions(
                total_images=self.config.total_images,
                first_window_images=self.config.first_window_images,
                first_window_seconds=self.config.first_window_seconds,
                avg_scene_seconds=self.config.avg_scene_seconds,
                seconds_per_image=self.config.seconds_per_image,
                words_per_minute=self.config.words_per_minute,
            )
            split = split_scenes(story.id, story.adapted_content or "", story.content, opts)
            await self.store.save_scenes(story.id, split.scenes)
            story = await self.store.update_story(
                story.id,
                total_scenes=len(split.scenes),
                total_images=split.total_images,
                first_window_images=split.first_window_images,
            )
        return {"story": story, "scenes": split.scenes}

    async def node_visual_prompts(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("visual_prompts", "Writing visual prompts"):
            style = await resolve_style(self.store, story.options.image_style, story.user_id)
            scenes = await write_visual_prompts(self.llm, story, state.scenes, style, self.config)
            for scene in scenes:
                if scene.has_image:
                    await self.store.update_scene(
                        story.id, scene.scene_number,
                        visual_prompt=scene.visual_prompt,
                        visual_description=scene.visual_description,
                    )
        return {"scenes": scenes, "style": style}

    async def node_hooks(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("hooks", "Writing engagement hooks"):
            scenes = await add_hooks(self.llm, story, state.scenes, self.config)
            for scene in scenes:
                if scene.hook_text:
                    await self.store.update_scene(story.id, scene.scene_number, hook_text=scene.hook_text)
        return {"scenes": scenes}

    async def node_media(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("media", "Generating images and audio"):
            fanout = SceneFanOut(self.store, self.objects, self.images, self.speech, tracker, self.config)
            scenes = await self.store.get_scenes(story.id)
            summary = await fanout.run(story, scenes, state.style)
            story = await self.store.update_story(
                story.id,
                degraded_scenes=sorted(summary.degraded),
                actual_duration=summary.actual_duration,
            )
            summary.enforce(self.config.scene_failure_tolerance)
        return {"story": story, "degraded": summary.degraded}

    async def node_secondary_translation(self, state: OrchestrationState) -> dict:
        story = state.story
        language = self.secondary_language(story)
        tracker = self.tracker(story.id)
        policy = RetryPolicy(
            max_attempts=self.config.llm_max_attempts,
            base_delay=self.config.llm_base_delay,
            max_delay=self.config.retry_max_delay,
            timeout=self.config.provider_timeout,
        )
        sem = asyncio.Semaphore(max(1, self.config.adaptation_concurrency))
        failed = []

        async def _one(scene):
            async with sem:
                try:
                    text = await translate_text(self.llm, scene.text_adapted, language, policy, story.options.llm_model)
                except Exception as e:
                    # Secondary texts are optional; the scene keeps its adapted text
                    logger.warning(f"Story {story.id} scene {scene.scene_number}: secondary translation failed: {e}")
                    failed.append(scene.scene_number)
                    return
                await self.store.update_scene(story.id, scene.scene_number, text_secondary=text)

        async with tracker.stage("secondary_translation", f"Translating scenes to {language}"):
            scenes = await self.store.get_scenes(story.id)
            await asyncio.gather(*(_one(s) for s in scenes))
            if failed:
                await tracker.log("secondary_translation", LogStatus.failed,
                                  f"Secondary translation failed for scenes {sorted(failed)}")
        return {"degraded": state.degraded}

    async def node_assemble(self, state: OrchestrationState) -> dict:
        story = state.story
        tracker = self.tracker(story.id)
        async with tracker.stage("assemble", "Packaging archive"):
            scenes = await self.store.get_scenes(story.id)
            url = await assemble_archive(self.objects, story, scenes, state.degraded, state.style)
            await self.store.update_story(story.id, archive_url=url)
        return {"archive_url": url}

    def secondary_language(self, story: Story) -> Optional[str]:
        language = story.options.secondary_language or self.config.secondary_language
        if not language or language == story.target_language:
            return None
        return language

    # --- run lifecycle ---

    async def create_story(self, req: StoryRequest) -> Story:
        result = validate_story_request(req)
        if not result.valid:
            raise ValidationError(result.errors)
        story = Story.from_request(req)
        story.estimated_tokens = result.estimated_tokens
        story.estimated_cost = result.estimated_cost
        if not req.original_language:
            detection = detect_language(req.content)
            story.original_language = detection.language
            story.language_confidence = detection.confidence
        await self.store.create_story(story)
        await self.tracker(story.id).log(
            "create", LogStatus.completed, "Story created",
            {"warnings": result.warnings, "estimated_tokens": result.estimated_tokens},
        )
        logger.info(f"Created story {story.id} ({len(story.content)} chars, {story.original_language} -> {story.target_language})")
        return story

    async def enqueue(self, story_id: str) -> Story:
        """Queue a run; at most one run per story can be queued or processing."""
        ok, story = await self.store.transition_status(
            story_id, [StoryStatus.created], StoryStatus.queued,
            progress=0, current_step="Queued", error_message=None,
        )
        if not ok:
            if story.status in ACTIVE_STATUSES:
                raise AlreadyProcessingError(story_id, story.status.value)
            if story.status == StoryStatus.completed:
                raise StoryAlreadyCompletedError(story_id)
            raise StoryTerminalError(story_id, story.status.value)
        run_id = self.queue.submit(story_id)
        return await self.store.update_story(story_id, run_id=run_id)

    async def run(self, story_id: str) -> Story:
        ok, story = await self.store.transition_status(
            story_id, [StoryStatus.created, StoryStatus.queued], StoryStatus.processing,
            current_step="Starting",
        )
        if not ok:
            # Duplicate delivery: another run already owns this story
            logger.warning(f"Ignoring run for story {story_id} in status {story.status.value}")
            return story

        tracker = self.tracker(story_id)
        await tracker.log("pipeline", LogStatus.started, "Processing started")
        try:
            final_state = await self.graph.ainvoke(OrchestrationState(story_id=story_id, story=story))
            if hasattr(final_state, "get"):
                archive_url = final_state.get("archive_url")
            else:
                archive_url = final_state.archive_url
            return await tracker.complete(archive_url=archive_url)
        except Exception as e:
            logger.exception(f"Pipeline failed for story {story_id}")
            return await tracker.fail(str(e) or type(e).__name__)

    async def resubmit(self, story_id: str) -> Story:
        """Restart a failed story from scratch as a new run record."""
        story = await self.store.require_story(story_id)
        if story.status == StoryStatus.created:
            return await self.enqueue(story_id)
        if story.status in ACTIVE_STATUSES:
            raise AlreadyProcessingError(story_id, story.status.value)
        if story.status == StoryStatus.completed:
            raise StoryAlreadyCompletedError(story_id)
        clone = Story(
            user_id=story.user_id,
            title=story.title,
            content=story.content,
            original_language=story.original_language,
            language_confidence=story.language_confidence,
            target_language=story.target_language,
            target_country=story.target_country,
            options=story.options,
            translation_only=story.translation_only,
            enable_hooks=story.enable_hooks,
            estimated_tokens=story.estimated_tokens,
            estimated_cost=story.estimated_cost,
            retry_count=story.retry_count + 1,
            resubmitted_from=story.id,
        )
        await self.store.create_story(clone)
        await self.tracker(clone.id).log("create", LogStatus.completed, f"Resubmitted from failed story {story.id}")
        logger.info(f"Story {story.id} resubmitted as {clone.id} (retry {clone.retry_count})")
        return await self.enqueue(clone.id)

    async def delete_story(self, story_id: str) -> None:
        story = await self.store.require_story(story_id)
        if story.status in ACTIVE_STATUSES:
            raise AlreadyProcessingError(story_id, story.status.value)
        removed = await self.objects.delete_prefix(f"stories/{story_id}/")
        await self.store.delete_story(story_id)
        logger.info(f"Deleted story {story_id} and {removed} stored objects")

    async def download_url(self, story_id: str) -> str:
        story = await self.store.require_story(story_id)
        if story.status != StoryStatus.completed:
            raise StoryNotReadyError(story_id, story.status.value)
        if not story.archive_url:
            raise ArchiveNotFoundError(story_id)
        return story.archive_url


def _after_visuals(state: OrchestrationState) -> str:
    return "hooks" if state.story.enable_hooks else "media"


def build_graph(pipeline: StoryPipeline):
    def _after_media(state: OrchestrationState) -> str:
        return "secondary_translation" if pipeline.secondary_language(state.story) else "assemble"

    g = StateGraph(OrchestrationState)
    g.add_node("detect_language", pipeline.node_detect_language)
    g.add_node("adapt", pipeline.node_adapt)
    g.add_node("split_scenes", pipeline.node_split_scenes)
    g.add_node("visual_prompts", pipeline.node_visual_prompts)
    g.add_node("hooks", pipeline.node_hooks)
    g.add_node("media", pipeline.node_media)
    g.add_node("secondary_translation", pipeline.node_secondary_translation)
    g.add_node("assemble", pipeline.node_assemble)
    g.set_entry_point("detect_language")
    g.add_edge("detect_language", "adapt")
    g.add_edge("adapt", "split_scenes")
    g.add_edge("split_scenes", "visual_prompts")
    g.add_conditional_edges("visual_prompts", _after_visuals, {"hooks": "hooks", "media": "media"})
    g.add_edge("hooks", "media")
    g.add_conditional_edges(
        "media", _after_media,
        {"secondary_translation": "secondary_translation", "assemble": "assemble"},
    )
    g.add_edge("secondary_translation", "assemble")
    g.add_edge("assemble", END)
    return g.compile()
