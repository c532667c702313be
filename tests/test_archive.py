import asyncio, io, json, zipfile

import pytest

from story_localizer.archive import archive_path, build_archive, build_manifest, slugify
from story_localizer.blob_storage import LocalObjectStorage
from story_localizer.errors import ArchiveError
from story_localizer.models import MediaStatus, Scene, Story


def _story():
    return Story(
        id="abc",
        title="The Lighthouse Keeper",
        adapted_title="Le Gardien du Phare !",
        content="text",
        original_language="en",
        target_language="fr",
        target_country="France",
    )


def _scene(n, **fields):
    data = dict(
        story_id="abc",
        scene_number=n,
        text_original=f"Original {n}.",
        text_adapted=f"Adapté {n}.",
        image_status=MediaStatus.skipped,
        audio_status=MediaStatus.completed,
    )
    data.update(fields)
    return Scene(**data)


def test_slugify_and_path():
    assert slugify("Le Gardien du Phare !") == "le-gardien-du-phare"
    assert slugify("???") == "story"
    assert archive_path(_story()) == "stories/abc/archive/le-gardien-du-phare.zip"


def test_manifest_lists_only_produced_files():
    scenes = [
        _scene(1, has_image=True, image_index=1, image_status=MediaStatus.completed, audio_url="file:///a/scene-1.mp3"),
        _scene(2, has_image=True, image_index=2, image_status=MediaStatus.failed, image_error="rejected"),
        _scene(3, audio_status=MediaStatus.failed, audio_url=None, text_secondary="Secondary 3."),
    ]
    manifest = build_manifest(_story(), scenes, {2: "image: rejected", 3: "audio: failed"}, None)

    files = [e["files"] for e in manifest["scenes"]]
    assert files[0]["image"] == "scenes/scene-1/image.png"
    assert files[0]["audio"] == "scenes/scene-1/audio.mp3"
    assert "image" not in files[1]
    assert "audio" not in files[2]
    assert files[2]["text_secondary"] == "scenes/scene-3/text-secondary.txt"
    assert manifest["total_images"] == 1
    assert manifest["degraded_scenes"] == [
        {"scene_number": 2, "reason": "image: rejected"},
        {"scene_number": 3, "reason": "audio: failed"},
    ]


def test_build_archive_requires_finished_scenes(tmp_path):
    objects = LocalObjectStorage(str(tmp_path))
    scenes = [_scene(1), _scene(2, audio_status=MediaStatus.processing)]
    with pytest.raises(ArchiveError):
        asyncio.run(build_archive(objects, _story(), scenes, {}))


def test_build_archive_contents(tmp_path):
    async def scenario():
        objects = LocalObjectStorage(str(tmp_path))
        image_url = await objects.put("stories/abc/images/scene-1-img-1.png", b"png-bytes", "image/png")
        audio_url = await objects.put("stories/abc/audio/scene-1.wav", b"RIFF-bytes", "audio/wav")
        scene = _scene(
            1, has_image=True, image_index=1, image_status=MediaStatus.completed,
            image_url=image_url, audio_url=audio_url, hook_text="Merci !",
        )
        return await build_archive(objects, _story(), [scene], {})

    data = asyncio.run(scenario())
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert zf.read("scenes/scene-1/image.png") == b"png-bytes"
        assert zf.read("scenes/scene-1/audio.wav") == b"RIFF-bytes"
        assert zf.getinfo("scenes/scene-1/audio.wav").compress_type == zipfile.ZIP_STORED
        assert zf.read("scenes/scene-1/text-adapted.txt").decode() == "Adapté 1.\n\nMerci !"
        metadata = json.loads(zf.read("scenes/scene-1/metadata.json"))
        readme = zf.read("README.md").decode()
    assert metadata["scene_number"] == 1
    assert metadata["status"] == "completed"
    assert readme.startswith("# Le Gardien du Phare !")
