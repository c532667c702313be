import logging
from contextlib import asynccontextmanager
from typing import List, Optional
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

# Ensure .env is loaded before importing modules that initialize API clients
from .settings import ALLOWED_ORIGINS, PipelineConfig, has_all_keys
from .blob_storage import get_object_storage
from .coqui_client import normalize_url
from .errors import StoryLocalizerError
from .kv_storage import get_store
from .llm import OpenAIChat
from .models import ProcessLogEntry, Scene, StoryRequest, ValidationResult, VisualStyle
from .orchestrator import StoryPipeline
from .replicate_client import ReplicateImageGenerator
from .styles import BUILTIN_STYLES, create_style, set_default_style
from .tts import SpeechSynthesizer
from .validation import validate_story_request

logger = logging.getLogger(__name__)

_pipeline: Optional[StoryPipeline] = None

def get_pipeline() -> StoryPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = StoryPipeline(
            store=get_store(),
            objects=get_object_storage(),
            llm=OpenAIChat(),
            images=ReplicateImageGenerator(),
            speech=SpeechSynthesizer(),
            config=PipelineConfig(),
        )
    return _pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    await store.connect()
    yield
    if _pipeline is not None:
        await _pipeline.queue.join()
    await store.close()
    await get_object_storage().close()


app = FastAPI(title="Story Localizer Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["POST", "GET", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


@app.exception_handler(StoryLocalizerError)
async def story_error_handler(request: Request, exc: StoryLocalizerError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


class ProcessResponse(BaseModel):
    story_id: str
    run_id: Optional[str]
    status: str


class CoquiTestRequest(BaseModel):
    url: str


@app.get("/health")
def health():
    keys_ok = has_all_keys()
    logger.info(f"Health check: API keys present = {keys_ok}")
    return {"ok": True, "has_keys": keys_ok}


@app.post("/v1/tts/coqui:test")
async def coqui_connection(req: CoquiTestRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    url = normalize_url(req.url)
    return {"url": url, "ok": await pipeline.speech.check_coqui(url)}


@app.post("/v1/stories:validate", response_model=ValidationResult)
def validate_story(req: StoryRequest):
    return validate_story_request(req)


@app.post("/v1/stories", status_code=201)
async def create_story(req: StoryRequest, pipeline: StoryPipeline = Depends(get_pipeline)):
    story = await pipeline.create_story(req)
    return story.model_dump(mode="json")


@app.post("/v1/stories/{story_id}:process", response_model=ProcessResponse)
async def process_story(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    story = await pipeline.enqueue(story_id)
    return ProcessResponse(story_id=story.id, run_id=story.run_id, status=story.status.value)


@app.post("/v1/stories/{story_id}:resubmit", response_model=ProcessResponse)
async def resubmit_story(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    story = await pipeline.resubmit(story_id)
    return ProcessResponse(story_id=story.id, run_id=story.run_id, status=story.status.value)


@app.get("/v1/stories/{story_id}")
async def story_status(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    story = await pipeline.store.require_story(story_id)
    return {
        **story.status_view(),
        "title": story.title,
        "adapted_title": story.adapted_title,
        "original_language": story.original_language,
        "target_language": story.target_language,
        "retry_count": story.retry_count,
        "run_id": story.run_id,
        "stats": {
            "total_scenes": story.total_scenes,
            "total_images": story.total_images,
            "first_window_images": story.first_window_images,
            "media_units_done": story.media_units_done,
            "media_units_total": story.media_units_total,
            "estimated_tokens": story.estimated_tokens,
            "estimated_cost": story.estimated_cost,
            "actual_duration": story.actual_duration,
            "degraded_scenes": story.degraded_scenes,
        },
    }


@app.get("/v1/stories/{story_id}/scenes", response_model=List[Scene])
async def story_scenes(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    await pipeline.store.require_story(story_id)
    return await pipeline.store.get_scenes(story_id)


@app.get("/v1/stories/{story_id}/logs", response_model=List[ProcessLogEntry])
async def story_logs(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    await pipeline.store.require_story(story_id)
    return await pipeline.store.list_logs(story_id)


@app.get("/v1/stories/{story_id}/download")
async def story_download(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    return {"story_id": story_id, "url": await pipeline.download_url(story_id)}


@app.delete("/v1/stories/{story_id}", status_code=204)
async def delete_story(story_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    await pipeline.delete_story(story_id)


@app.get("/v1/users/{user_id}/styles", response_model=List[VisualStyle])
async def list_styles(user_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    return list(BUILTIN_STYLES.values()) + await pipeline.store.list_styles(user_id)


@app.post("/v1/users/{user_id}/styles", response_model=VisualStyle, status_code=201)
async def add_style(user_id: str, style: VisualStyle, pipeline: StoryPipeline = Depends(get_pipeline)):
    return await create_style(pipeline.store, style.model_copy(update={"user_id": user_id}))


@app.post("/v1/users/{user_id}/styles/{style_id}:default", response_model=VisualStyle)
async def make_default_style(user_id: str, style_id: str, pipeline: StoryPipeline = Depends(get_pipeline)):
    return await set_default_style(pipeline.store, user_id, style_id)
