import io, json, logging, re, zipfile
from typing import Dict, List, Optional
from .errors import ArchiveError
from .language import language_name
from .models import MediaStatus, Scene, Story, VisualStyle, utcnow

logger = logging.getLogger(__name__)


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w]+", "-", (text or "").lower(), flags=re.UNICODE).strip("-_")
    return slug[:80] or "story"


def archive_path(story: Story) -> str:
    return f"stories/{story.id}/archive/{slugify(story.adapted_title or story.title)}.zip"


def _audio_name(scene: Scene) -> str:
    return "audio.wav" if (scene.audio_url or "").endswith(".wav") else "audio.mp3"


def build_manifest(story: Story, scenes: List[Scene], degraded: Dict[int, str], style: Optional[VisualStyle]) -> dict:
    entries = []
    for scene in scenes:
        folder = f"scenes/scene-{scene.scene_number}"
        files = {
            "metadata": f"{folder}/metadata.json",
            "text_original": f"{folder}/text-original.txt",
            "text_adapted": f"{folder}/text-adapted.txt",
        }
        if scene.text_secondary:
            files["text_secondary"] = f"{folder}/text-secondary.txt"
        if scene.image_status == MediaStatus.completed:
            files["image"] = f"{folder}/image.png"
        if scene.audio_status == MediaStatus.completed:
            files["audio"] = f"{folder}/{_audio_name(scene)}"
        entries.append({
            "scene_number": scene.scene_number,
            "start_time": scene.start_time,
            "estimated_duration": scene.estimated_duration,
            "actual_duration": scene.actual_duration,
            "has_image": scene.has_image,
            "image_index": scene.image_index,
            "is_first_window": scene.is_first_window,
            "image_status": scene.image_status.value,
            "audio_status": scene.audio_status.value,
            "files": files,
        })
    return {
        "story_id": story.id,
        "title": story.title,
        "adapted_title": story.adapted_title,
        "original_language": story.original_language,
        "target_language": story.target_language,
        "target_country": story.target_country,
        "translation_only": story.translation_only,
        "visual_style": style.name if style else None,
        "total_scenes": len(scenes),
        "total_images": sum(1 for s in scenes if s.image_status == MediaStatus.completed),
        "first_window_images": story.first_window_images,
        "estimated_duration": round(sum(s.estimated_duration for s in scenes), 2),
        "actual_duration": round(sum(s.actual_duration or 0 for s in scenes), 2),
        "created_at": story.created_at.isoformat(),
        "generated_at": utcnow().isoformat(),
        "scenes": entries,
        "degraded_scenes": [
            {"scene_number": n, "reason": reason} for n, reason in sorted(degraded.items())
        ],
    }


def build_readme(story: Story, manifest: dict) -> str:
    lines = [
        f"# {story.adapted_title or story.title}",
        "",
        f"Original title: {story.title}",
        f"Language: {language_name(story.original_language)} -> {language_name(story.target_language)} ({story.target_country})",
        f"Scenes: {manifest['total_scenes']}, images: {manifest['total_images']}",
        f"Estimated narration: {manifest['estimated_duration']:.0f}s",
        "",
        "## Layout",
        "",
        "- `manifest.json`: story metadata, scene order and degraded scenes",
        "- `scenes/scene-N/`: image, narration audio, texts and metadata for scene N",
        "",
    ]
    if manifest["degraded_scenes"]:
        lines += ["## Degraded scenes", ""]
        lines += [f"- Scene {d['scene_number']}: {d['reason']}" for d in manifest["degraded_scenes"]]
        lines.append("")
    return "\n".join(lines)


async def build_archive(
    objects,
    story: Story,
    scenes: List[Scene],
    degraded: Dict[int, str],
    style: Optional[VisualStyle] = None,
) -> bytes:
    pending = [s.scene_number for s in scenes if not s.is_done()]
    if pending:
        raise ArchiveError(f"Cannot assemble archive: scenes {pending} still have media in progress")

    manifest = build_manifest(story, scenes, degraded, style)
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("manifest.json", json.dumps(manifest, ensure_ascii=False, indent=2))
        zf.writestr("README.md", build_readme(story, manifest))
        for scene, entry in zip(scenes, manifest["scenes"]):
            files = entry["files"]
            zf.writestr(files["metadata"], json.dumps(scene.model_dump(mode="json"), ensure_ascii=False, indent=2))
            zf.writestr(files["text_original"], scene.text_original)
            zf.writestr(files["text_adapted"], scene.narration_text)
            if "text_secondary" in files:
                zf.writestr(files["text_secondary"], scene.text_secondary)
            if "image" in files:
                zf.writestr(files["image"], await objects.read(scene.image_url))
            if "audio" in files:
                zf.writestr(files["audio"], await objects.read(scene.audio_url), compress_type=zipfile.ZIP_STORED)
    return buffer.getvalue()


async def assemble_archive(
    objects,
    story: Story,
    scenes: List[Scene],
    degraded: Dict[int, str],
    style: Optional[VisualStyle] = None,
) -> str:
    """Package every scene's media and upload the zip; returns its URL."""
    data = await build_archive(objects, story, scenes, degraded, style)
    url = await objects.put(archive_path(story), data, "application/zip")
    logger.info(f"Story {story.id}: archive uploaded ({len(data)} bytes) to {url}")
    return url
