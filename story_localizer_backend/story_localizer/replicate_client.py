import time, httpx, asyncio, logging
from typing import Optional
from .errors import ProviderPermanentError, ProviderTransientError
from .media import to_png
from .models import VisualStyle
from .settings import REPLICATE_API_TOKEN, REPLICATE_MODEL_VERSION, REPLICATE_POLL_INTERVAL_MS, REPLICATE_POLL_TIMEOUT_S
from .styles import compose_prompt

logger = logging.getLogger(__name__)

API_URL = "https://api.replicate.com/v1"


def _parse_selector(selector: str):
    # Returns a tuple (mode, data)
    # mode == "version": data={"version": <hash>}
    # mode == "model": data={"owner": <owner>, "name": <name>}
    if "/" in selector:
        owner_name, _, _version_alias = selector.partition(":")
        if "/" in owner_name:
            owner, name = owner_name.split("/", 1)
            return "model", {"owner": owner, "name": name}
    return "version", {"version": selector}


def _raise_for_status(r: httpx.Response, what: str):
    if r.status_code < 400:
        return
    message = f"{what} failed {r.status_code}: {r.text[:300]}"
    if r.status_code == 429 or r.status_code >= 500:
        raise ProviderTransientError("replicate", message)
    raise ProviderPermanentError("replicate", message)


class ReplicateImageGenerator:
    """Image capability backed by Replicate predictions."""

    def __init__(
        self,
        token: str = REPLICATE_API_TOKEN,
        model: str = REPLICATE_MODEL_VERSION,
        poll_interval: float = REPLICATE_POLL_INTERVAL_MS / 1000.0,
        poll_timeout: float = REPLICATE_POLL_TIMEOUT_S,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        # Prefer explicit version from env for stability; fall back to a public model alias (latest).
        self.selector = model or "black-forest-labs/flux-schnell"
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self._transport = transport

    def _headers(self):
        if not self.token:
            raise ProviderPermanentError("replicate", "REPLICATE_API_TOKEN is not set; please configure your .env")
        return {"Authorization": f"Token {self.token}"}

    async def _create(self, client: httpx.AsyncClient, json_body: dict) -> dict:
        mode, data = _parse_selector(self.selector)
        if mode == "version":
            url = f"{API_URL}/predictions"
            json_body = {**json_body, "version": data["version"]}
        else:
            url = f"{API_URL}/models/{data['owner']}/{data['name']}/predictions"
        headers = {**self._headers(), "Content-Type": "application/json"}

        r = await client.post(url, headers=headers, json=json_body)
        if r.status_code == 404 and mode == "model":
            # Model endpoint may be unavailable for aliased models; resolve the latest version instead
            logger.info("Falling back to latest version resolution for model")
            model_resp = await client.get(f"{API_URL}/models/{data['owner']}/{data['name']}", headers=self._headers())
            _raise_for_status(model_resp, "Replicate model lookup")
            version_id = (model_resp.json().get("latest_version") or {}).get("id")
            if not version_id:
                raise ProviderPermanentError("replicate", "Could not resolve latest version for model")
            r = await client.post(f"{API_URL}/predictions", headers=headers, json={**json_body, "version": version_id})
        _raise_for_status(r, "Replicate create")
        return r.json()

    async def _wait(self, client: httpx.AsyncClient, pred_id: str) -> str:
        start = time.time()
        while True:
            s = await client.get(f"{API_URL}/predictions/{pred_id}", headers=self._headers())
            _raise_for_status(s, "Replicate status")
            body = s.json()
            status = body.get("status")
            if status in ("succeeded", "failed", "canceled"):
                if status != "succeeded":
                    raise ProviderTransientError("replicate", f"prediction {status}: {body.get('error')}")
                output = body.get("output")
                if isinstance(output, list) and output:
                    return output[0]
                if isinstance(output, str) and output:
                    return output
                raise ProviderPermanentError("replicate", "prediction succeeded but returned no output URL")
            if time.time() - start > self.poll_timeout:
                raise TimeoutError(f"Replicate polling timeout for prediction {pred_id}")
            await asyncio.sleep(self.poll_interval)

    async def generate(
        self,
        prompt: str,
        style: Optional[VisualStyle] = None,
        aspect_ratio: str = "16:9",
        seed: Optional[int] = None,
    ) -> bytes:
        full_prompt = compose_prompt(prompt, style)
        logger.info(f"Starting Replicate image generation for prompt: {full_prompt[:100]}...")
        json_body = {
            "input": {
                "prompt": full_prompt,
                "num_outputs": 1,
                "aspect_ratio": aspect_ratio,
                "output_format": "png",
            }
        }
        if seed is not None:
            json_body["input"]["seed"] = seed

        async with httpx.AsyncClient(timeout=30, transport=self._transport) as client:
            pred = await self._create(client, json_body)
            logger.info(f"Replicate prediction created with ID: {pred['id']}")
            url = await self._wait(client, pred["id"])
            img = await client.get(url)
            _raise_for_status(img, "Replicate download")
        return to_png(img.content)
