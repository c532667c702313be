import logging
from typing import Dict, Optional
from .errors import StoryLocalizerError
from .models import VisualStyle

logger = logging.getLogger(__name__)

DEFAULT_STYLE_ID = "cinematic"

BUILTIN_STYLES: Dict[str, VisualStyle] = {
    "cinematic": VisualStyle(
        id="cinematic",
        name="Cinematic",
        description="Photorealistic frames with professional film quality",
        is_default=True,
        system_prompt="Photorealistic cinematic photography, dramatic lighting, film quality",
        technical_prefix="Shot on Sony A7R IV, 85mm f/1.4 lens, natural lighting, film grain, shallow depth of field",
        style_suffix="--style raw --no text, watermark, logo, cartoon, anime, illustration, 3D render, CGI, drawing",
    ),
    "vintage": VisualStyle(
        id="vintage",
        name="Vintage/Sepia",
        description="Old film look, sepia tones, nostalgic atmosphere",
        system_prompt="Vintage sepia-toned photograph, aged film aesthetic, warm brown tones, nostalgic atmosphere",
        technical_prefix="Vintage photograph, sepia tones, old film grain, scratched film texture, weathered edges, antique aesthetic, faded colors, slight vignette",
        style_suffix="--style raw --no text, watermark, logo, modern, digital, sharp, vibrant colors, clean",
    ),
    "documentary": VisualStyle(
        id="documentary",
        name="Documentary",
        description="Natural light, authentic atmosphere, real moments",
        system_prompt="Documentary photography style, natural lighting, authentic atmosphere, photojournalistic",
        technical_prefix="Documentary photograph, photojournalistic style, candid shot, natural lighting, authentic moment, real-life scene",
        style_suffix="--style raw --no text, watermark, logo, staged, artificial, posed, studio",
    ),
    "artistic": VisualStyle(
        id="artistic",
        name="Artistic",
        description="Fine art photography, painterly quality, ethereal atmosphere",
        system_prompt="Artistic fine art photography, painterly quality, ethereal atmosphere, soft focus",
        technical_prefix="Fine art photograph, painterly aesthetic, soft focus, ethereal lighting, artistic composition, dreamy atmosphere",
        style_suffix="--style raw --no text, watermark, logo, harsh, digital, sharp, commercial",
    ),
}


class StyleNotFoundError(StoryLocalizerError):
    code = "style_not_found"
    status_code = 404

    def __init__(self, style_id: str):
        super().__init__(f"Visual style {style_id} not found")


def compose_prompt(prompt: str, style: Optional[VisualStyle]) -> str:
    if style is None:
        return prompt
    parts = [style.technical_prefix.strip(), prompt.strip().rstrip("."), style.style_suffix.strip()]
    return ". ".join(p for p in parts if p)


def _builtin(ref: str) -> Optional[VisualStyle]:
    key = ref.strip().lower()
    if key in BUILTIN_STYLES:
        return BUILTIN_STYLES[key]
    for style in BUILTIN_STYLES.values():
        if style.name.lower() == key:
            return style
    return None


async def resolve_style(store, style_ref: Optional[str], user_id: Optional[str]) -> VisualStyle:
    """Story style, else the user's default style, else cinematic."""
    if style_ref:
        style = _builtin(style_ref) or await store.get_style(style_ref)
        if style is not None:
            return style
        logger.warning(f"Unknown visual style {style_ref}, falling back to default")
    if user_id:
        for style in await store.list_styles(user_id):
            if style.is_default:
                return style
    return BUILTIN_STYLES[DEFAULT_STYLE_ID]


async def set_default_style(store, user_id: str, style_id: str) -> VisualStyle:
    """Make ``style_id`` the user's only default style.

    Competing defaults are cleared before the new default is written.
    """
    styles = await store.list_styles(user_id)
    target = next((s for s in styles if s.id == style_id), None)
    if target is None:
        raise StyleNotFoundError(style_id)
    for style in styles:
        if style.is_default and style.id != style_id:
            await store.save_style(style.model_copy(update={"is_default": False}))
    target = target.model_copy(update={"is_default": True})
    await store.save_style(target)
    logger.info(f"Visual style {style_id} is now the default for user {user_id}")
    return target


async def create_style(store, style: VisualStyle) -> VisualStyle:
    if style.is_default and style.user_id:
        await store.save_style(style.model_copy(update={"is_default": False}))
        return await set_default_style(store, style.user_id, style.id)
    return await store.save_style(style)
