import json, logging
from typing import Optional
from .errors import ProviderPermanentError, ProviderTransientError
from .settings import OPENAI_API_KEY, OPENAI_MODEL, PROVIDER_TIMEOUT_S

logger = logging.getLogger(__name__)

_client = None

def _get_client():
    global _client
    if _client is None:
        from openai import AsyncOpenAI
        if not OPENAI_API_KEY:
            raise ProviderPermanentError("openai", "OPENAI_API_KEY is not set; please configure your .env")
        # Retries are driven by the pipeline's own policy
        _client = AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=PROVIDER_TIMEOUT_S, max_retries=0)
    return _client


class OpenAIChat:
    """LLM capability backed by the OpenAI chat completions API."""

    def __init__(self, client=None, default_model: str = OPENAI_MODEL):
        self._client = client
        self.default_model = default_model

    @property
    def client(self):
        return self._client or _get_client()

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> str:
        model = model or self.default_model
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        logger.info(f"Calling OpenAI {model} ({len(user)} chars)")
        resp = await self.client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            temperature=temperature,
            **kwargs,
        )
        content = (resp.choices[0].message.content or "").strip()
        if not content:
            raise ProviderTransientError("openai", f"Empty completion from {model}")
        return content


def parse_json(text: str) -> dict:
    """Parse a JSON completion, tolerating markdown code fences."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`")
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:]
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON from LLM: {text[:200]}")
        raise ProviderTransientError("openai", f"invalid JSON completion: {e}") from e
