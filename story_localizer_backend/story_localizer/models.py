import uuid
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, computed_field
from typing import Any, Dict, List, Literal, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class StoryStatus(str, Enum):
    created = "created"
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = (StoryStatus.completed, StoryStatus.failed)


class MediaStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


TERMINAL_MEDIA = (MediaStatus.completed, MediaStatus.failed, MediaStatus.skipped)


class LogStatus(str, Enum):
    started = "started"
    completed = "completed"
    failed = "failed"


class StoryOptions(BaseModel):
    llm_model: Optional[str] = None
    tts_provider: Literal["elevenlabs", "coqui"] = "elevenlabs"
    voice_id: str = ""
    voice_name: Optional[str] = None
    elevenlabs_model: Optional[str] = None
    coqui_url: Optional[str] = None
    tts_speed: float = 1.0
    image_provider: Literal["replicate"] = "replicate"
    image_style: Optional[str] = None
    aspect_ratio: str = "16:9"
    seed: Optional[int] = None
    secondary_language: Optional[str] = None


class StoryRequest(BaseModel):
    title: str
    content: str
    original_language: Optional[str] = None
    target_language: str
    target_country: str
    user_id: Optional[str] = None
    options: StoryOptions = Field(default_factory=StoryOptions)
    translation_only: bool = False
    enable_hooks: bool = False


class Story(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    title: str
    content: str
    original_language: str = "unknown"
    language_confidence: Optional[float] = None
    target_language: str
    target_country: str
    options: StoryOptions = Field(default_factory=StoryOptions)
    translation_only: bool = False
    enable_hooks: bool = False

    adapted_title: Optional[str] = None
    adapted_content: Optional[str] = None
    archive_url: Optional[str] = None

    status: StoryStatus = StoryStatus.created
    progress: int = 0
    current_step: str = "Created"
    error_message: Optional[str] = None
    retry_count: int = 0
    run_id: Optional[str] = None
    resubmitted_from: Optional[str] = None
    media_units_total: int = 0
    media_units_done: int = 0

    total_scenes: int = 0
    total_images: int = 0
    first_window_images: int = 0
    estimated_tokens: int = 0
    estimated_cost: float = 0.0
    actual_duration: float = 0.0
    degraded_scenes: List[int] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @classmethod
    def from_request(cls, req: StoryRequest) -> "Story":
        return cls(
            user_id=req.user_id,
            title=req.title,
            content=req.content,
            original_language=req.original_language or "unknown",
            target_language=req.target_language,
            target_country=req.target_country,
            options=req.options,
            translation_only=req.translation_only,
            enable_hooks=req.enable_hooks,
        )

    def status_view(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "current_step": self.current_step,
            "error_message": self.error_message,
        }


class Scene(BaseModel):
    story_id: str
    scene_number: int
    text_original: str = ""
    text_adapted: str
    text_secondary: Optional[str] = None
    hook_text: Optional[str] = None
    estimated_duration: float = 0.0
    start_time: float = 0.0
    actual_duration: Optional[float] = None
    has_image: bool = False
    image_index: Optional[int] = None
    is_first_window: bool = False
    visual_description: Optional[str] = None
    visual_prompt: Optional[str] = None
    image_status: MediaStatus = MediaStatus.pending
    audio_status: MediaStatus = MediaStatus.pending
    image_attempts: int = 0
    audio_attempts: int = 0
    image_error: Optional[str] = None
    audio_error: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    metadata_url: Optional[str] = None

    @computed_field
    @property
    def status(self) -> MediaStatus:
        tracks = (self.image_status, self.audio_status)
        if MediaStatus.processing in tracks:
            return MediaStatus.processing
        if all(t in TERMINAL_MEDIA for t in tracks):
            if MediaStatus.failed in tracks:
                return MediaStatus.failed
            return MediaStatus.completed
        return MediaStatus.pending

    @computed_field
    @property
    def retry_count(self) -> int:
        return max(self.image_attempts - 1, 0) + max(self.audio_attempts - 1, 0)

    @computed_field
    @property
    def error_message(self) -> Optional[str]:
        errors = [e for e in (self.image_error, self.audio_error) if e]
        return " | ".join(errors) if errors else None

    def is_done(self) -> bool:
        return self.image_status in TERMINAL_MEDIA and self.audio_status in TERMINAL_MEDIA

    @property
    def narration_text(self) -> str:
        if self.hook_text:
            return f"{self.text_adapted}\n\n{self.hook_text}"
        return self.text_adapted


class ProcessLogEntry(BaseModel):
    story_id: str
    step: str
    status: LogStatus
    message: str = ""
    metadata: Optional[Dict[str, Any]] = None
    duration: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)


class VisualStyle(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    name: str
    description: str = ""
    is_default: bool = False
    system_prompt: str = ""
    technical_prefix: str = ""
    style_suffix: str = ""


class ValidationResult(BaseModel):
    valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    estimated_tokens: int = 0
    estimated_cost: float = 0.0


class DetectionResult(BaseModel):
    language: str
    confidence: float
    raw_code: Optional[str] = None


class OrchestrationState(BaseModel):
    story_id: str
    story: Story
    chunks: List[str] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)
    style: Optional[VisualStyle] = None
    degraded: Dict[int, str] = Field(default_factory=dict)
    archive_url: Optional[str] = None
