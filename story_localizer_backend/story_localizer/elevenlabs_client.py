import httpx, logging
from typing import Optional
from .errors import ProviderPermanentError, ProviderTransientError
from .settings import ELEVENLABS_API_KEY, ELEVENLABS_MODEL_ID

logger = logging.getLogger(__name__)

API_URL = "https://api.elevenlabs.io/v1"


class ElevenLabsClient:
    def __init__(self, api_key: str = ELEVENLABS_API_KEY, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self._transport = transport

    def _headers(self):
        if not self.api_key:
            raise ProviderPermanentError("elevenlabs", "ELEVENLABS_API_KEY is not set; please configure your .env")
        return {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json"
        }

    async def tts_to_bytes(self, text: str, voice_id: str, model_id: Optional[str] = None, speed: float = 1.0) -> bytes:
        payload = {
            "text": text,
            "model_id": model_id or ELEVENLABS_MODEL_ID,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.75, "speed": speed},
        }
        url = f"{API_URL}/text-to-speech/{voice_id}"
        async with httpx.AsyncClient(timeout=60, transport=self._transport) as client:
            r = await client.post(url, headers=self._headers(), params={"output_format": "mp3_22050_32"}, json=payload)
        if r.status_code == 429:
            logger.warning("ElevenLabs rate limited (429)")
            raise ProviderTransientError("elevenlabs", "rate limited")
        if r.status_code >= 500:
            raise ProviderTransientError("elevenlabs", f"server error {r.status_code}")
        if r.status_code >= 400:
            raise ProviderPermanentError("elevenlabs", f"request rejected {r.status_code}: {r.text[:300]}")
        if not r.content:
            raise ProviderTransientError("elevenlabs", "empty audio response")
        return r.content
