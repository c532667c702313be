import math, re
from .models import StoryRequest, ValidationResult
from .chunker import paragraphs
from .settings import (
    MAX_STORY_LENGTH,
    MIN_STORY_LENGTH,
    MIN_WORD_COUNT,
    OPENAI_PRICE_PER_1K_TOKENS,
)

CHARS_PER_TOKEN = 4
# title, content chunks, scene prompts, hooks and secondary translation
PROCESSING_PASSES = 5

TITLE_MIN, TITLE_MAX = 3, 200
SEED_MAX = 2147483647
TTS_SPEED_RANGE = (0.7, 1.2)
ASPECT_RATIOS = ("16:9", "1:1", "9:16")
MIN_VOICE_ID_LENGTH = 5

_LANG_CODE = re.compile(r"^[a-z]{2}$")
_URL = re.compile(r"^https?://\S+$")


def estimate_tokens(content: str) -> int:
    return math.ceil(len(content or "") / CHARS_PER_TOKEN)


def estimate_cost(tokens: int) -> float:
    return round(tokens / 1000 * OPENAI_PRICE_PER_1K_TOKENS * PROCESSING_PASSES, 6)


def validate_story_request(req: StoryRequest) -> ValidationResult:
    errors, warnings = [], []
    content = req.content or ""
    length = len(content)

    if length < MIN_STORY_LENGTH:
        errors.append(f"Story content must be at least {MIN_STORY_LENGTH} characters (got {length})")
    elif length > MAX_STORY_LENGTH:
        errors.append(f"Story content must be at most {MAX_STORY_LENGTH} characters (got {length})")

    words = content.split()
    if words and len(words) < MIN_WORD_COUNT:
        errors.append(f"Story must contain at least {MIN_WORD_COUNT} words (got {len(words)})")
    if words:
        avg_word = sum(len(w) for w in words) / len(words)
        if avg_word < 3:
            warnings.append("Average word length is unusually short; check the text encoding")
        elif avg_word > 15:
            warnings.append("Average word length is unusually long; the text may lack spaces")
    if content and len(paragraphs(content)) < 3:
        warnings.append("Story has fewer than 3 paragraphs; scene splitting works best with paragraphs")
    if length > MAX_STORY_LENGTH * 0.8 and length <= MAX_STORY_LENGTH:
        warnings.append("Very long story; processing will take a while")

    title = (req.title or "").strip()
    if not TITLE_MIN <= len(title) <= TITLE_MAX:
        errors.append(f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters")

    if not _LANG_CODE.match(req.target_language or ""):
        errors.append("Target language must be a two-letter ISO 639-1 code")
    if req.original_language and not _LANG_CODE.match(req.original_language):
        errors.append("Original language must be a two-letter ISO 639-1 code")
    if len((req.target_country or "").strip()) < 2:
        errors.append("Target country is required")

    opts = req.options
    if len((opts.voice_id or "").strip()) < MIN_VOICE_ID_LENGTH:
        errors.append("A voice id is required for text-to-speech")
    if opts.tts_provider == "coqui" and not _URL.match((opts.coqui_url or "").strip()):
        errors.append("Coqui TTS requires a reachable http(s) endpoint URL")
    low, high = TTS_SPEED_RANGE
    if not low <= opts.tts_speed <= high:
        errors.append(f"TTS speed must be between {low} and {high}")
    if opts.seed is not None and not 0 <= opts.seed <= SEED_MAX:
        errors.append(f"Seed must be between 0 and {SEED_MAX}")
    if opts.aspect_ratio not in ASPECT_RATIOS:
        errors.append(f"Aspect ratio must be one of {', '.join(ASPECT_RATIOS)}")
    if opts.secondary_language and not _LANG_CODE.match(opts.secondary_language):
        errors.append("Secondary language must be a two-letter ISO 639-1 code")

    tokens = estimate_tokens(content)
    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        estimated_tokens=tokens,
        estimated_cost=estimate_cost(tokens),
    )
