import httpx, logging
from typing import Optional
from .errors import ProviderPermanentError, ProviderTransientError
from .settings import COQUI_TIMEOUT_S

logger = logging.getLogger(__name__)

# XTTS names Chinese zh-cn
LANGUAGE_MAP = {"zh": "zh-cn"}


def normalize_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise ProviderPermanentError("coqui", "Coqui endpoint URL is not configured")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


class CoquiClient:
    """Client for a self-hosted Coqui XTTS server."""

    def __init__(self, base_url: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = normalize_url(base_url)
        self._transport = transport

    async def health(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                r = await client.get(f"{self.base_url}/api/health")
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Coqui health check failed for {self.base_url}: {e}")
            return False

    async def tts_to_bytes(self, text: str, voice_id: str, language: str, speed: float = 1.0) -> bytes:
        payload = {
            "text": text,
            "language": LANGUAGE_MAP.get(language, language),
            "voice_id": voice_id,
            "speed": speed,
        }
        async with httpx.AsyncClient(timeout=COQUI_TIMEOUT_S, transport=self._transport) as client:
            r = await client.post(f"{self.base_url}/api/tts", headers={"Accept": "audio/wav"}, json=payload)
        if r.status_code == 429 or r.status_code >= 500:
            raise ProviderTransientError("coqui", f"HTTP {r.status_code}: {r.text[:300]}")
        if r.status_code >= 400:
            raise ProviderPermanentError("coqui", f"HTTP {r.status_code}: {r.text[:300]}")
        if not r.content:
            raise ProviderTransientError("coqui", "empty audio response")
        return r.content
