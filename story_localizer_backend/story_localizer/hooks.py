import logging
from typing import Dict, List
from .language import language_name
from .models import Scene, Story
from .prompts import HOOK_PURPOSES, HOOK_SYSTEM_PROMPT, HOOK_USER_TEMPLATE
from .retry import RetryPolicy, call_with_retry
from .settings import PipelineConfig

logger = logging.getLogger(__name__)

MIN_SCENES_FOR_ALL_HOOKS = 5

FALLBACK_HOOKS = {
    "en": {
        "intro": "Welcome! Get comfortable, because this story is full of surprises.",
        "subscribe": "If you enjoy stories like this one, subscribe so you never miss the next one.",
        "like": "If the story has caught you, a like helps us a lot.",
        "comment": "What would you have done in their place? Tell us in the comments.",
        "outro": "Thank you for listening. See you in the next story!",
    },
    "fr": {
        "intro": "Bienvenue ! Installez-vous confortablement, cette histoire réserve bien des surprises.",
        "subscribe": "Si vous aimez ces histoires, abonnez-vous pour ne pas manquer la prochaine.",
        "like": "Si l'histoire vous plaît, un j'aime nous aide beaucoup.",
        "comment": "Qu'auriez-vous fait à leur place ? Dites-le-nous en commentaire.",
        "outro": "Merci de votre écoute. À bientôt pour une nouvelle histoire !",
    },
    "es": {
        "intro": "¡Bienvenidos! Pónganse cómodos, esta historia está llena de sorpresas.",
        "subscribe": "Si te gustan estas historias, suscríbete para no perderte la próxima.",
        "like": "Si la historia te está gustando, un me gusta nos ayuda mucho.",
        "comment": "¿Qué habrías hecho tú en su lugar? Cuéntanoslo en los comentarios.",
        "outro": "Gracias por escuchar. ¡Nos vemos en la próxima historia!",
    },
    "de": {
        "intro": "Willkommen! Macht es euch gemütlich, diese Geschichte steckt voller Überraschungen.",
        "subscribe": "Wenn dir solche Geschichten gefallen, abonniere den Kanal, um keine zu verpassen.",
        "like": "Wenn dich die Geschichte gepackt hat, hilft uns ein Like sehr.",
        "comment": "Was hättest du an ihrer Stelle getan? Schreib es in die Kommentare.",
        "outro": "Danke fürs Zuhören. Bis zur nächsten Geschichte!",
    },
    "tr": {
        "intro": "Hoş geldiniz! Arkanıza yaslanın, bu hikaye sürprizlerle dolu.",
        "subscribe": "Bu tür hikayeleri seviyorsanız, bir sonrakini kaçırmamak için abone olun.",
        "like": "Hikaye hoşunuza gittiyse, bir beğeni bize çok yardımcı olur.",
        "comment": "Siz onların yerinde olsanız ne yapardınız? Yorumlarda bize yazın.",
        "outro": "Dinlediğiniz için teşekkürler. Bir sonraki hikayede görüşmek üzere!",
    },
}


def determine_hook_placements(scene_count: int) -> Dict[int, str]:
    """Map scene numbers to the hook narrated after them."""
    if scene_count <= 0:
        return {}
    if scene_count == 1:
        return {1: "outro"}
    if scene_count < MIN_SCENES_FOR_ALL_HOOKS:
        return {1: "intro", scene_count: "outro"}
    wanted = [
        (2, "intro"),
        (int(scene_count * 0.25) + 1, "subscribe"),
        (int(scene_count * 0.6) + 1, "like"),
        (int(scene_count * 0.75) + 1, "comment"),
        (scene_count, "outro"),
    ]
    placements: Dict[int, str] = {}
    for number, hook in wanted:
        # The outro always wins the last scene
        if hook != "outro" and (number in placements or number >= scene_count):
            continue
        placements[number] = hook
    return placements


def fallback_hook(hook_type: str, language: str) -> str:
    return FALLBACK_HOOKS.get(language, FALLBACK_HOOKS["en"])[hook_type]


async def add_hooks(llm, story: Story, scenes: List[Scene], config: PipelineConfig) -> List[Scene]:
    """Attach hook lines to the chosen scenes; failures fall back to canned text."""
    placements = determine_hook_placements(len(scenes))
    system = HOOK_SYSTEM_PROMPT.format(target_language=language_name(story.target_language))
    policy = RetryPolicy(
        max_attempts=config.llm_max_attempts,
        base_delay=config.llm_base_delay,
        max_delay=config.retry_max_delay,
        timeout=config.provider_timeout,
    )
    by_number = {s.scene_number: s for s in scenes}
    for number, hook_type in sorted(placements.items()):
        scene = by_number[number]
        user = HOOK_USER_TEMPLATE.format(
            hook_type=hook_type,
            title=story.adapted_title or story.title,
            purpose=HOOK_PURPOSES[hook_type],
            context=scene.text_adapted[:600],
        )

        async def _call():
            return (await llm.complete(system, user, model=story.options.llm_model, temperature=0.8)).strip()

        try:
            scene.hook_text = await call_with_retry(_call, policy, f"{hook_type} hook for story {story.id}")
        except Exception as e:
            logger.warning(f"Story {story.id}: {hook_type} hook generation failed, using fallback: {e}")
            scene.hook_text = fallback_hook(hook_type, story.target_language)
    logger.info(f"Story {story.id}: added {len(placements)} hooks")
    return scenes
