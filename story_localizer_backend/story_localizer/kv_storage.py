"""
Story state storage.

Stories, scenes, process logs and visual styles live behind ``StoryStore``.
``KVStoryStore`` talks to a Redis-compatible REST endpoint (Vercel KV /
Upstash) so state survives across serverless invocations; atomic updates
run as Lua scripts. ``InMemoryStoryStore`` serves local development and
tests. ``get_store()`` hands out the process-wide instance.
"""
import asyncio, json, logging
from typing import Any, Dict, Iterable, List, Optional, Tuple
import httpx
from pydantic import TypeAdapter
from .errors import MaxRetriesExceededError, StorageError, StoryNotFoundError
from .models import TERMINAL_STATUSES, ProcessLogEntry, Scene, Story, StoryStatus, VisualStyle, utcnow
from .retry import RetryPolicy, call_with_retry
from .settings import KV_REST_API_TOKEN, KV_REST_API_URL

logger = logging.getLogger(__name__)

_jsonable = TypeAdapter(Dict[str, Any])
SCENE_COMPUTED = {"status", "retry_count", "error_message"}


def _encode_fields(fields: Dict[str, Any]) -> Dict[str, str]:
    return {k: json.dumps(v) for k, v in _jsonable.dump_python(fields, mode="json").items()}


def _decode_hash(raw) -> Dict[str, Any]:
    # HGETALL over REST returns a flat [field, value, field, value, ...] list
    if not raw:
        return {}
    if isinstance(raw, dict):
        items = raw.items()
    else:
        items = zip(raw[0::2], raw[1::2])
    return {k: json.loads(v) for k, v in items}


class StoryStore:
    """Persistence contract used by the pipeline."""

    async def connect(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def create_story(self, story: Story) -> Story:
        raise NotImplementedError

    async def get_story(self, story_id: str) -> Optional[Story]:
        raise NotImplementedError

    async def require_story(self, story_id: str) -> Story:
        story = await self.get_story(story_id)
        if story is None:
            raise StoryNotFoundError(story_id)
        return story

    async def update_story(self, story_id: str, **fields) -> Story:
        raise NotImplementedError

    async def transition_status(
        self, story_id: str, allowed_from: Iterable[StoryStatus], to: StoryStatus, **fields
    ) -> Tuple[bool, Story]:
        """Compare-and-set the status; returns (transitioned, current story)."""
        raise NotImplementedError

    async def advance_progress(self, story_id: str, progress: int, current_step: Optional[str] = None) -> int:
        """Raise progress to ``progress`` unless it is already higher."""
        raise NotImplementedError

    async def increment(self, story_id: str, field: str, amount: int = 1) -> int:
        raise NotImplementedError

    async def save_scenes(self, story_id: str, scenes: List[Scene]) -> None:
        raise NotImplementedError

    async def get_scenes(self, story_id: str) -> List[Scene]:
        raise NotImplementedError

    async def get_scene(self, story_id: str, scene_number: int) -> Optional[Scene]:
        raise NotImplementedError

    async def update_scene(self, story_id: str, scene_number: int, **fields) -> Scene:
        raise NotImplementedError

    async def append_log(self, entry: ProcessLogEntry) -> None:
        raise NotImplementedError

    async def list_logs(self, story_id: str) -> List[ProcessLogEntry]:
        raise NotImplementedError

    async def delete_story(self, story_id: str) -> bool:
        raise NotImplementedError

    async def save_style(self, style: VisualStyle) -> VisualStyle:
        raise NotImplementedError

    async def get_style(self, style_id: str) -> Optional[VisualStyle]:
        raise NotImplementedError

    async def list_styles(self, user_id: str) -> List[VisualStyle]:
        raise NotImplementedError


class InMemoryStoryStore(StoryStore):
    def __init__(self):
        self._lock = asyncio.Lock()
        self._stories: Dict[str, Story] = {}
        self._scenes: Dict[str, Dict[int, Scene]] = {}
        self._logs: Dict[str, List[ProcessLogEntry]] = {}
        self._styles: Dict[str, VisualStyle] = {}

    @staticmethod
    def _merge(model, **fields):
        return type(model).model_validate({**model.model_dump(), **fields})

    async def create_story(self, story: Story) -> Story:
        async with self._lock:
            self._stories[story.id] = story.model_copy(deep=True)
        return story

    async def get_story(self, story_id: str) -> Optional[Story]:
        async with self._lock:
            story = self._stories.get(story_id)
            return story.model_copy(deep=True) if story else None

    async def update_story(self, story_id: str, **fields) -> Story:
        async with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                raise StoryNotFoundError(story_id)
            story = self._merge(story, **fields, updated_at=utcnow())
            self._stories[story_id] = story
            return story.model_copy(deep=True)

    async def transition_status(self, story_id, allowed_from, to, **fields):
        async with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                raise StoryNotFoundError(story_id)
            if story.status not in tuple(allowed_from):
                return False, story.model_copy(deep=True)
            story = self._merge(story, **fields, status=to, updated_at=utcnow())
            self._stories[story_id] = story
            return True, story.model_copy(deep=True)

    async def advance_progress(self, story_id, progress, current_step=None):
        async with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                raise StoryNotFoundError(story_id)
            if story.status in TERMINAL_STATUSES:
                return story.progress
            fields = {"progress": max(story.progress, min(max(int(progress), 0), 100))}
            if current_step is not None:
                fields["current_step"] = current_step
            story = self._merge(story, **fields, updated_at=utcnow())
            self._stories[story_id] = story
            return story.progress

    async def increment(self, story_id, field, amount=1):
        async with self._lock:
            story = self._stories.get(story_id)
            if story is None:
                raise StoryNotFoundError(story_id)
            value = getattr(story, field) + amount
            self._stories[story_id] = self._merge(story, **{field: value})
            return value

    async def save_scenes(self, story_id, scenes):
        async with self._lock:
            self._scenes[story_id] = {s.scene_number: s.model_copy(deep=True) for s in scenes}

    async def get_scenes(self, story_id):
        async with self._lock:
            scenes = self._scenes.get(story_id, {})
            return [scenes[n].model_copy(deep=True) for n in sorted(scenes)]

    async def get_scene(self, story_id, scene_number):
        async with self._lock:
            scene = self._scenes.get(story_id, {}).get(scene_number)
            return scene.model_copy(deep=True) if scene else None

    async def update_scene(self, story_id, scene_number, **fields):
        async with self._lock:
            scenes = self._scenes.get(story_id, {})
            if scene_number not in scenes:
                raise StorageError(f"Scene {scene_number} of story {story_id} not found")
            scene = self._merge(scenes[scene_number], **fields)
            scenes[scene_number] = scene
            return scene.model_copy(deep=True)

    async def append_log(self, entry):
        async with self._lock:
            self._logs.setdefault(entry.story_id, []).append(entry.model_copy())

    async def list_logs(self, story_id):
        async with self._lock:
            return [e.model_copy() for e in self._logs.get(story_id, [])]

    async def delete_story(self, story_id):
        async with self._lock:
            existed = self._stories.pop(story_id, None) is not None
            self._scenes.pop(story_id, None)
            self._logs.pop(story_id, None)
            return existed

    async def save_style(self, style):
        async with self._lock:
            self._styles[style.id] = style.model_copy()
        return style

    async def get_style(self, style_id):
        async with self._lock:
            style = self._styles.get(style_id)
            return style.model_copy() if style else None

    async def list_styles(self, user_id):
        async with self._lock:
            return [s.model_copy() for s in self._styles.values() if s.user_id == user_id]


# KEYS[1] story hash; ARGV[1] JSON list of allowed statuses (each JSON encoded),
# ARGV[2] new status, ARGV[3..] field/value pairs
TRANSITION_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return {-1, ''} end
local current = redis.call('HGET', KEYS[1], 'status')
local allowed = cjson.decode(ARGV[1])
for _, status in ipairs(allowed) do
  if status == current then
    redis.call('HSET', KEYS[1], 'status', ARGV[2])
    for i = 3, #ARGV, 2 do
      redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
    end
    return {1, ARGV[2]}
  end
end
return {0, current}
"""

# KEYS[1] story hash; ARGV[1] progress, ARGV[2] updated_at, ARGV[3] optional step
ADVANCE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return -1 end
local current = tonumber(redis.call('HGET', KEYS[1], 'progress') or '0')
local status = redis.call('HGET', KEYS[1], 'status')
if status == '"completed"' or status == '"failed"' then return current end
local wanted = tonumber(ARGV[1])
if wanted > current then
  redis.call('HSET', KEYS[1], 'progress', ARGV[1])
  current = wanted
end
redis.call('HSET', KEYS[1], 'updated_at', ARGV[2])
if ARGV[3] then
  redis.call('HSET', KEYS[1], 'current_step', ARGV[3])
end
return current
"""

# KEYS[1] hash; ARGV field/value pairs, written only if the hash exists
UPDATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then return 0 end
for i = 1, #ARGV, 2 do
  redis.call('HSET', KEYS[1], ARGV[i], ARGV[i + 1])
end
return 1
"""


class KVStoryStore(StoryStore):
    def __init__(self, url: str = KV_REST_API_URL, token: str = KV_REST_API_TOKEN, transport: Optional[httpx.AsyncBaseTransport] = None):
        if not url or not token:
            raise StorageError("KV_REST_API_URL and KV_REST_API_TOKEN are required for KV storage")
        self.url = url.rstrip("/")
        self.token = token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._policy = RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=2.0, timeout=15)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json"
        }

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.url, headers=self._headers(), timeout=10, transport=self._transport
            )
            logger.info("KV storage connected")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, body: list):
        await self.connect()

        async def _call():
            try:
                r = await self._client.post(path, json=body)
                r.raise_for_status()
            except httpx.HTTPError as e:
                raise StorageError(f"KV request failed: {e}") from e
            return r.json()

        try:
            return await call_with_retry(_call, self._policy, "KV request")
        except MaxRetriesExceededError as e:
            raise StorageError(f"KV unavailable after {e.attempts} attempts: {e.last_error}") from e

    async def command(self, *args):
        data = await self._post("/", [str(a) for a in args])
        if isinstance(data, dict) and data.get("error"):
            raise StorageError(f"KV command {args[0]} failed: {data['error']}")
        return data.get("result")

    async def pipeline(self, commands: List[list]) -> list:
        if not commands:
            return []
        data = await self._post("/pipeline", [[str(a) for a in c] for c in commands])
        results = []
        for item in data:
            if item.get("error"):
                raise StorageError(f"KV pipeline failed: {item['error']}")
            results.append(item.get("result"))
        return results

    @staticmethod
    def _story_key(story_id: str) -> str:
        return f"story:{story_id}"

    @staticmethod
    def _scene_key(story_id: str, scene_number: int) -> str:
        return f"story:{story_id}:scene:{scene_number}"

    @staticmethod
    def _flatten(fields: Dict[str, Any]) -> List[str]:
        flat = []
        for k, v in _encode_fields(fields).items():
            flat.extend([k, v])
        return flat

    async def create_story(self, story):
        await self.command("HSET", self._story_key(story.id), *self._flatten(story.model_dump()))
        logger.info(f"Stored story {story.id} in KV")
        return story

    async def get_story(self, story_id):
        data = _decode_hash(await self.command("HGETALL", self._story_key(story_id)))
        return Story.model_validate(data) if data else None

    async def update_story(self, story_id, **fields):
        fields["updated_at"] = utcnow()
        ok = await self.command("EVAL", UPDATE_SCRIPT, 1, self._story_key(story_id), *self._flatten(fields))
        if not ok:
            raise StoryNotFoundError(story_id)
        return await self.require_story(story_id)

    async def transition_status(self, story_id, allowed_from, to, **fields):
        allowed = json.dumps([json.dumps(StoryStatus(s).value) for s in allowed_from])
        fields["updated_at"] = utcnow()
        result = await self.command(
            "EVAL", TRANSITION_SCRIPT, 1, self._story_key(story_id),
            allowed, json.dumps(StoryStatus(to).value), *self._flatten(fields),
        )
        if int(result[0]) == -1:
            raise StoryNotFoundError(story_id)
        return int(result[0]) == 1, await self.require_story(story_id)

    async def advance_progress(self, story_id, progress, current_step=None):
        args = [str(min(max(int(progress), 0), 100)), json.dumps(utcnow().isoformat())]
        if current_step is not None:
            args.append(json.dumps(current_step))
        result = await self.command("EVAL", ADVANCE_SCRIPT, 1, self._story_key(story_id), *args)
        if int(result) == -1:
            raise StoryNotFoundError(story_id)
        return int(result)

    async def increment(self, story_id, field, amount=1):
        return int(await self.command("HINCRBY", self._story_key(story_id), field, amount))

    async def save_scenes(self, story_id, scenes):
        commands = [["DEL", f"story:{story_id}:scenes"]]
        for scene in scenes:
            key = self._scene_key(story_id, scene.scene_number)
            commands.append(["HSET", key, *self._flatten(scene.model_dump(exclude=SCENE_COMPUTED))])
            commands.append(["RPUSH", f"story:{story_id}:scenes", scene.scene_number])
        await self.pipeline(commands)

    async def get_scenes(self, story_id):
        numbers = await self.command("LRANGE", f"story:{story_id}:scenes", 0, -1) or []
        raw = await self.pipeline([["HGETALL", self._scene_key(story_id, int(n))] for n in numbers])
        scenes = [Scene.model_validate(_decode_hash(r)) for r in raw if r]
        return sorted(scenes, key=lambda s: s.scene_number)

    async def get_scene(self, story_id, scene_number):
        data = _decode_hash(await self.command("HGETALL", self._scene_key(story_id, scene_number)))
        return Scene.model_validate(data) if data else None

    async def update_scene(self, story_id, scene_number, **fields):
        key = self._scene_key(story_id, scene_number)
        ok = await self.command("EVAL", UPDATE_SCRIPT, 1, key, *self._flatten(fields))
        if not ok:
            raise StorageError(f"Scene {scene_number} of story {story_id} not found")
        scene = await self.get_scene(story_id, scene_number)
        if scene is None:
            raise StorageError(f"Scene {scene_number} of story {story_id} disappeared")
        return scene

    async def append_log(self, entry):
        await self.command("RPUSH", f"story:{entry.story_id}:logs", entry.model_dump_json())

    async def list_logs(self, story_id):
        raw = await self.command("LRANGE", f"story:{story_id}:logs", 0, -1) or []
        return [ProcessLogEntry.model_validate_json(r) for r in raw]

    async def delete_story(self, story_id):
        numbers = await self.command("LRANGE", f"story:{story_id}:scenes", 0, -1) or []
        keys = [self._scene_key(story_id, int(n)) for n in numbers]
        keys += [f"story:{story_id}:scenes", f"story:{story_id}:logs"]
        deleted = await self.command("DEL", self._story_key(story_id), *keys)
        logger.info(f"Deleted story {story_id} from KV ({deleted} keys)")
        return bool(deleted)

    async def save_style(self, style):
        await self.pipeline([
            ["SET", f"style:{style.id}", style.model_dump_json()],
            ["SADD", f"user:{style.user_id}:styles", style.id],
        ])
        return style

    async def get_style(self, style_id):
        raw = await self.command("GET", f"style:{style_id}")
        return VisualStyle.model_validate_json(raw) if raw else None

    async def list_styles(self, user_id):
        ids = await self.command("SMEMBERS", f"user:{user_id}:styles") or []
        raw = await self.pipeline([["GET", f"style:{i}"] for i in ids])
        return [VisualStyle.model_validate_json(r) for r in raw if r]


_store: Optional[StoryStore] = None

def get_store() -> StoryStore:
    global _store
    if _store is None:
        if KV_REST_API_URL and KV_REST_API_TOKEN:
            _store = KVStoryStore()
            logger.info("KV storage enabled")
        else:
            logger.warning("KV storage not configured - falling back to in-memory storage")
            _store = InMemoryStoryStore()
    return _store
