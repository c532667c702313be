import os
from dotenv import load_dotenv
import logging
from pydantic import BaseModel

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Configure logging
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Load .env file if it exists (for local development)
env_path = os.path.join(os.path.dirname(__file__), "..", ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    logger.info("Loaded .env file for local development")
else:
    logger.info("No .env file found, using environment variables")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_PRICE_PER_1K_TOKENS = float(os.getenv("OPENAI_PRICE_PER_1K_TOKENS", "0.00015"))

REPLICATE_API_TOKEN = os.getenv("REPLICATE_API_TOKEN", "")
REPLICATE_MODEL_VERSION = os.getenv("REPLICATE_MODEL_VERSION", "")
REPLICATE_POLL_INTERVAL_MS = int(os.getenv("REPLICATE_POLL_INTERVAL_MS", "1500"))
REPLICATE_POLL_TIMEOUT_S = int(os.getenv("REPLICATE_POLL_TIMEOUT_S", "120"))

ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_multilingual_v2")
COQUI_TIMEOUT_S = int(os.getenv("COQUI_TIMEOUT_S", "120"))

# Storage backends. Without KV credentials the in-memory store is used,
# without a blob token media is written under LOCAL_STORAGE_DIR.
KV_REST_API_URL = os.getenv("KV_REST_API_URL", "").strip()
KV_REST_API_TOKEN = os.getenv("KV_REST_API_TOKEN", "").strip()
BLOB_READ_WRITE_TOKEN = os.getenv("BLOB_READ_WRITE_TOKEN", "").strip()
LOCAL_STORAGE_DIR = os.getenv("LOCAL_STORAGE_DIR", os.path.join(os.getcwd(), ".story-media"))

# Story limits
MIN_STORY_LENGTH = int(os.getenv("MIN_STORY_LENGTH", "1000"))
MAX_STORY_LENGTH = int(os.getenv("MAX_STORY_LENGTH", "100000"))
MIN_WORD_COUNT = int(os.getenv("MIN_WORD_COUNT", "200"))
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "8000"))

# Scene/image layout
TOTAL_IMAGES = int(os.getenv("TOTAL_IMAGES", "20"))
FIRST_WINDOW_IMAGES = int(os.getenv("FIRST_WINDOW_IMAGES", "6"))
FIRST_WINDOW_SECONDS = int(os.getenv("FIRST_WINDOW_SECONDS", "180"))
AVG_SCENE_SECONDS = int(os.getenv("AVG_SCENE_SECONDS", "15"))
SECONDS_PER_IMAGE = int(os.getenv("SECONDS_PER_IMAGE", "30"))
WORDS_PER_MINUTE = int(os.getenv("WORDS_PER_MINUTE", "150"))

# Concurrency and retries
MAX_CONCURRENT_SCENES = int(os.getenv("MAX_CONCURRENT_SCENES", "4"))
ADAPTATION_CONCURRENCY = int(os.getenv("ADAPTATION_CONCURRENCY", "3"))
MEDIA_MAX_ATTEMPTS = int(os.getenv("MEDIA_MAX_ATTEMPTS", "3"))
MEDIA_BASE_DELAY_S = float(os.getenv("MEDIA_BASE_DELAY_S", "1.0"))
LLM_MAX_ATTEMPTS = int(os.getenv("LLM_MAX_ATTEMPTS", "3"))
LLM_BASE_DELAY_S = float(os.getenv("LLM_BASE_DELAY_S", "1.0"))
RETRY_MAX_DELAY_S = float(os.getenv("RETRY_MAX_DELAY_S", "30"))
PROVIDER_TIMEOUT_S = float(os.getenv("PROVIDER_TIMEOUT_S", "90"))

# Adapted chunk length must stay within these ratios of the source chunk
ADAPTATION_MIN_RATIO = float(os.getenv("ADAPTATION_MIN_RATIO", "0.6"))
ADAPTATION_MAX_RATIO = float(os.getenv("ADAPTATION_MAX_RATIO", "1.6"))

# Fraction of scenes allowed to miss a media track before the story fails
SCENE_FAILURE_TOLERANCE = float(os.getenv("SCENE_FAILURE_TOLERANCE", "0.2"))

SECONDARY_LANGUAGE = os.getenv("SECONDARY_LANGUAGE", "").strip()

# Comma-separated list of allowed origins for CORS (e.g., "https://app.vercel.app,https://www.example.com").
_allowed_origins_env = os.getenv("ALLOWED_ORIGINS", "").strip()
if _allowed_origins_env:
    ALLOWED_ORIGINS = [o.strip() for o in _allowed_origins_env.split(",") if o.strip()]
else:
    ALLOWED_ORIGINS = ["*"]


class PipelineConfig(BaseModel):
    """Tunables injected into the pipeline; defaults come from the environment."""
    chunk_size: int = CHUNK_SIZE
    total_images: int = TOTAL_IMAGES
    first_window_images: int = FIRST_WINDOW_IMAGES
    first_window_seconds: int = FIRST_WINDOW_SECONDS
    avg_scene_seconds: int = AVG_SCENE_SECONDS
    seconds_per_image: int = SECONDS_PER_IMAGE
    words_per_minute: int = WORDS_PER_MINUTE
    max_concurrent_scenes: int = MAX_CONCURRENT_SCENES
    adaptation_concurrency: int = ADAPTATION_CONCURRENCY
    media_max_attempts: int = MEDIA_MAX_ATTEMPTS
    media_base_delay: float = MEDIA_BASE_DELAY_S
    llm_max_attempts: int = LLM_MAX_ATTEMPTS
    llm_base_delay: float = LLM_BASE_DELAY_S
    retry_max_delay: float = RETRY_MAX_DELAY_S
    provider_timeout: float = PROVIDER_TIMEOUT_S
    adaptation_min_ratio: float = ADAPTATION_MIN_RATIO
    adaptation_max_ratio: float = ADAPTATION_MAX_RATIO
    scene_failure_tolerance: float = SCENE_FAILURE_TOLERANCE
    default_llm_model: str = OPENAI_MODEL
    secondary_language: str = SECONDARY_LANGUAGE


def has_all_keys() -> bool:
    keys_present = all([OPENAI_API_KEY, REPLICATE_API_TOKEN, ELEVENLABS_API_KEY])
    if not keys_present:
        missing = []
        if not OPENAI_API_KEY: missing.append("OPENAI_API_KEY")
        if not REPLICATE_API_TOKEN: missing.append("REPLICATE_API_TOKEN")
        if not ELEVENLABS_API_KEY: missing.append("ELEVENLABS_API_KEY")
        logger.warning(f"Missing API keys: {', '.join(missing)}")
    return keys_present
