import logging
from typing import List, Optional
from .errors import ProviderTransientError
from .llm import parse_json
from .models import Scene, Story, VisualStyle
from .prompts import VISUAL_SYSTEM_PROMPT, VISUAL_USER_TEMPLATE
from .retry import RetryPolicy, call_with_retry
from .settings import PipelineConfig

logger = logging.getLogger(__name__)


async def write_visual_prompts(
    llm,
    story: Story,
    scenes: List[Scene],
    style: Optional[VisualStyle],
    config: PipelineConfig,
) -> List[Scene]:
    """Fill ``visual_prompt``/``visual_description`` on every image scene.

    Scenes are handled in order so the character description from the first
    image carries over to the rest.
    """
    guidance = f"Visual style: {style.system_prompt}" if style and style.system_prompt else ""
    system = VISUAL_SYSTEM_PROMPT.format(style_guidance=guidance)
    policy = RetryPolicy(
        max_attempts=config.llm_max_attempts,
        base_delay=config.llm_base_delay,
        max_delay=config.retry_max_delay,
        timeout=config.provider_timeout,
    )
    characters = ""
    title = story.adapted_title or story.title

    for scene in scenes:
        if not scene.has_image:
            continue
        user = VISUAL_USER_TEMPLATE.format(
            title=title,
            scene_number=scene.scene_number,
            total_scenes=len(scenes),
            window_note=" (opening of the story)" if scene.is_first_window else "",
            character_note=f"Main characters: {characters}\n" if characters else "",
            text=scene.text_adapted,
        )

        async def _call():
            raw = await llm.complete(system, user, model=story.options.llm_model, temperature=0.7, json_mode=True)
            data = parse_json(raw)
            if not data.get("prompt"):
                raise ProviderTransientError("openai", "visual prompt missing from response")
            return data

        data = await call_with_retry(_call, policy, f"visual prompt for scene {scene.scene_number} of story {story.id}")
        scene.visual_prompt = data["prompt"].strip()
        scene.visual_description = (data.get("description") or "").strip() or None
        if not characters and data.get("characters"):
            characters = str(data["characters"]).strip()
        logger.info(f"Story {story.id} scene {scene.scene_number}: visual prompt ready")
    return scenes
