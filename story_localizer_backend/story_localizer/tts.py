import logging
from typing import Dict, Optional
from pydantic import BaseModel
from .coqui_client import CoquiClient
from .elevenlabs_client import ElevenLabsClient
from .media import audio_duration
from .models import StoryOptions

logger = logging.getLogger(__name__)


class SpeechResult(BaseModel):
    audio: bytes
    duration: float
    content_type: str = "audio/mpeg"
    extension: str = "mp3"


class SpeechSynthesizer:
    """Routes narration to the TTS provider selected in the story options."""

    def __init__(self, elevenlabs: Optional[ElevenLabsClient] = None):
        self.elevenlabs = elevenlabs or ElevenLabsClient()
        self._coqui: Dict[str, CoquiClient] = {}

    def _coqui_for(self, url: str) -> CoquiClient:
        if url not in self._coqui:
            self._coqui[url] = CoquiClient(url)
        return self._coqui[url]

    async def check_coqui(self, url: str) -> bool:
        """True when the Coqui server at ``url`` answers its health endpoint."""
        ok = await self._coqui_for(url).health()
        logger.info(f"Coqui endpoint {url} reachable: {ok}")
        return ok

    async def synthesize(self, text: str, options: StoryOptions, language: str) -> SpeechResult:
        if options.tts_provider == "coqui":
            audio = await self._coqui_for(options.coqui_url or "").tts_to_bytes(
                text, options.voice_id, language, speed=options.tts_speed
            )
            return SpeechResult(audio=audio, duration=audio_duration(audio, text), content_type="audio/wav", extension="wav")
        audio = await self.elevenlabs.tts_to_bytes(
            text, options.voice_id, model_id=options.elevenlabs_model, speed=options.tts_speed
        )
        return SpeechResult(audio=audio, duration=audio_duration(audio, text))
