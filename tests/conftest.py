import io, json, re
from typing import Dict, Optional, Set

import pytest
from PIL import Image

from story_localizer.blob_storage import LocalObjectStorage
from story_localizer.errors import ProviderPermanentError, ProviderTransientError
from story_localizer.kv_storage import InMemoryStoryStore
from story_localizer.models import StoryOptions, StoryRequest
from story_localizer.orchestrator import StoryPipeline
from story_localizer.settings import PipelineConfig
from story_localizer.tts import SpeechResult

SENTENCES = [
    "The old lighthouse keeper walked along the rocky shore every morning before the sun came up.",
    "He counted the boats that had returned during the night and wrote their names in a small notebook.",
    "Nobody in the village remembered a time when he had missed a single day of this quiet ritual.",
]


def make_content(paragraph_count: int = 12) -> str:
    paras = []
    for i in range(paragraph_count):
        paras.append(f"Chapter {i + 1} begins here. " + " ".join(SENTENCES))
    return "\n\n".join(paras)


def make_request(**overrides) -> StoryRequest:
    data = dict(
        title="The Lighthouse Keeper",
        content=make_content(),
        original_language="en",
        target_language="fr",
        target_country="France",
        user_id="user-1",
        options=StoryOptions(voice_id="voice-12345"),
    )
    data.update(overrides)
    return StoryRequest(**data)


def png_bytes(mode: str = "RGB") -> bytes:
    buf = io.BytesIO()
    Image.new(mode, (4, 4), (10, 20, 30, 255)[: len(mode)]).save(buf, format="PNG")
    return buf.getvalue()


class FakeLLM:
    """Answers each prompt kind the pipeline sends with plausible output."""

    def __init__(self, shrink: bool = False, fail_hooks: bool = False, fail_translation: bool = False):
        self.shrink = shrink
        self.fail_hooks = fail_hooks
        self.fail_translation = fail_translation
        self.calls = []

    async def complete(self, system, user, model=None, temperature=0.7, json_mode=False):
        self.calls.append((system, user, json_mode))
        if json_mode:
            n = re.search(r"Scene (\d+) of", user).group(1)
            return json.dumps({
                "description": f"Shore at dawn, scene {n}",
                "prompt": f"An old man on a rocky shore at dawn, scene {n}",
                "characters": "an old man with a grey beard and a blue coat",
            })
        if system.startswith("You write short spoken"):
            if self.fail_hooks:
                raise ProviderPermanentError("openai", "hook rejected")
            return "Thanks for listening to this story."
        if system.startswith("You are a professional translator"):
            if self.fail_translation:
                raise ProviderPermanentError("openai", "translation rejected")
            return f"[secondary] {user}"
        if "story title" in user:
            return '"Le Gardien du Phare"'
        chunk = user.split("Text:\n", 1)[1]
        if self.shrink:
            return " ".join(chunk.split()[:5])
        return chunk

    def calls_of(self, kind: str) -> int:
        if kind == "title":
            return sum(1 for _, user, _ in self.calls if "story title" in user)
        if kind == "chunk":
            return sum(1 for _, user, _ in self.calls if "Text:\n" in user)
        raise ValueError(kind)


_SCENE = re.compile(r"scene (\d+)")


class FakeImages:
    def __init__(
        self,
        fail_scenes: Optional[Set[int]] = None,
        transient: Optional[Dict[int, int]] = None,
        fail_all: bool = False,
        outage: bool = False,
    ):
        self.fail_scenes = fail_scenes or set()
        self.transient = dict(transient or {})
        self.fail_all = fail_all
        # every call fails with a retryable error
        self.outage = outage
        self.calls = []

    async def generate(self, prompt, style=None, aspect_ratio="16:9", seed=None):
        m = _SCENE.search(prompt)
        n = int(m.group(1)) if m else 0
        self.calls.append(n)
        if self.fail_all or n in self.fail_scenes:
            raise ProviderPermanentError("replicate", f"prompt rejected for scene {n}")
        if self.outage:
            raise ProviderTransientError("replicate", "service unavailable")
        if self.transient.get(n, 0) > 0:
            self.transient[n] -= 1
            raise ProviderTransientError("replicate", "rate limited")
        return png_bytes()


class FakeSpeech:
    def __init__(self, fail_all: bool = False, reachable: Optional[Set[str]] = None):
        self.fail_all = fail_all
        self.reachable = reachable or set()
        self.texts = []

    async def check_coqui(self, url):
        return url in self.reachable

    async def synthesize(self, text, options, language):
        self.texts.append(text)
        if self.fail_all:
            raise ProviderPermanentError("elevenlabs", "voice not found")
        return SpeechResult(audio=b"ID3" + b"\x00" * 4000, duration=2.5)


class RecordingQueue:
    """Job queue that only records submissions."""

    def __init__(self):
        self.submitted = []
        self.runner = None

    def bind(self, runner):
        self.runner = runner

    def submit(self, story_id):
        self.submitted.append(story_id)
        return f"run-{len(self.submitted)}"

    async def join(self):
        pass


def fast_config(**overrides) -> PipelineConfig:
    data = dict(
        media_base_delay=0,
        llm_base_delay=0,
        retry_max_delay=0,
        provider_timeout=5,
        secondary_language="",
    )
    data.update(overrides)
    return PipelineConfig(**data)


def make_pipeline(root, llm=None, images=None, speech=None, queue=None, **config) -> StoryPipeline:
    return StoryPipeline(
        store=InMemoryStoryStore(),
        objects=LocalObjectStorage(str(root)),
        llm=llm or FakeLLM(),
        images=images or FakeImages(),
        speech=speech or FakeSpeech(),
        queue=queue,
        config=fast_config(**config),
    )


@pytest.fixture
def media_root(tmp_path):
    root = tmp_path / "media"
    root.mkdir()
    return root
