import logging
from langdetect import DetectorFactory, detect_langs
from langdetect.lang_detect_exception import LangDetectException
from .models import DetectionResult

logger = logging.getLogger(__name__)

# langdetect is randomized; a fixed seed makes results reproducible
DetectorFactory.seed = 0

MIN_DETECTION_LENGTH = 100
DEFAULT_LANGUAGE = "en"
UNDETERMINED_CONFIDENCE = 0.5
ERROR_CONFIDENCE = 0.3

LANGUAGE_NAMES = {
    "ar": "Arabic", "bg": "Bulgarian", "cs": "Czech", "da": "Danish", "de": "German",
    "el": "Greek", "en": "English", "es": "Spanish", "fa": "Persian", "fi": "Finnish",
    "fr": "French", "he": "Hebrew", "hi": "Hindi", "hr": "Croatian", "hu": "Hungarian",
    "id": "Indonesian", "it": "Italian", "ja": "Japanese", "ko": "Korean", "nl": "Dutch",
    "no": "Norwegian", "pl": "Polish", "pt": "Portuguese", "ro": "Romanian", "ru": "Russian",
    "sk": "Slovak", "sv": "Swedish", "th": "Thai", "tr": "Turkish", "uk": "Ukrainian",
    "vi": "Vietnamese", "zh": "Chinese",
}


def _normalize(code: str) -> str:
    # langdetect reports Chinese as zh-cn / zh-tw
    return code.split("-")[0].lower()


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(_normalize(code or ""), code or "the source language")


def detect_language(text: str) -> DetectionResult:
    """Best-effort source language detection. Never raises."""
    if not text or len(text.strip()) < MIN_DETECTION_LENGTH:
        logger.warning(f"Text too short for language detection ({len(text or '')} chars), defaulting to {DEFAULT_LANGUAGE}")
        return DetectionResult(language=DEFAULT_LANGUAGE, confidence=ERROR_CONFIDENCE)
    try:
        candidates = detect_langs(text)
    except LangDetectException as e:
        logger.warning(f"Language undetermined: {e}")
        return DetectionResult(language=DEFAULT_LANGUAGE, confidence=UNDETERMINED_CONFIDENCE, raw_code="und")
    except Exception as e:
        logger.error(f"Language detection failed: {e}")
        return DetectionResult(language=DEFAULT_LANGUAGE, confidence=ERROR_CONFIDENCE)

    if not candidates or candidates[0].lang == "unknown":
        return DetectionResult(language=DEFAULT_LANGUAGE, confidence=UNDETERMINED_CONFIDENCE, raw_code="und")
    best = candidates[0]
    confidence = min(max(float(best.prob), 0.0), 1.0)
    logger.info(f"Detected language {best.lang} with confidence {confidence:.2f}")
    return DetectionResult(language=_normalize(best.lang), confidence=confidence, raw_code=best.lang)
