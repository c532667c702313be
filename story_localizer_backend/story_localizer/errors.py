"""
Error taxonomy for the story pipeline.

Every error carries a stable ``code`` and the HTTP status the API layer
responds with. Transient provider failures are retried, everything else
is surfaced as-is.
"""
from typing import Optional


class StoryLocalizerError(Exception):
    code = "story_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(StoryLocalizerError):
    code = "validation_error"
    status_code = 400

    def __init__(self, errors: list):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Invalid story request")


class StoryNotFoundError(StoryLocalizerError):
    code = "story_not_found"
    status_code = 404

    def __init__(self, story_id: str):
        self.story_id = story_id
        super().__init__(f"Story {story_id} not found")


class AlreadyProcessingError(StoryLocalizerError):
    code = "already_processing"
    status_code = 400

    def __init__(self, story_id: str, status: str):
        self.story_id = story_id
        self.status = status
        super().__init__(f"Story {story_id} is already processing (status={status})")


class StoryAlreadyCompletedError(StoryLocalizerError):
    code = "already_completed"
    status_code = 400

    def __init__(self, story_id: str):
        super().__init__(f"Story {story_id} is already completed")


class StoryTerminalError(StoryLocalizerError):
    code = "story_terminal"
    status_code = 409

    def __init__(self, story_id: str, status: str):
        self.status = status
        super().__init__(f"Story {story_id} is {status}; resubmit it to run again")


class StoryNotReadyError(StoryLocalizerError):
    code = "story_not_ready"
    status_code = 409

    def __init__(self, story_id: str, status: str):
        super().__init__(f"Story {story_id} is not completed yet (status={status})")


class ProviderTransientError(StoryLocalizerError):
    """Network, timeout or rate-limit failure from an external capability."""
    code = "provider_transient"
    status_code = 502

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderPermanentError(StoryLocalizerError):
    """The capability rejected the request; retrying will not help."""
    code = "provider_permanent"
    status_code = 502

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class StorageError(StoryLocalizerError):
    code = "storage_error"
    status_code = 503


class MaxRetriesExceededError(StoryLocalizerError):
    code = "max_retries_exceeded"
    status_code = 502

    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException]):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


class LengthMismatchError(StoryLocalizerError):
    """Adapted text diverged too far from the source length."""
    code = "length_mismatch"
    status_code = 502

    def __init__(self, ratio: float, low: float, high: float):
        self.ratio = ratio
        super().__init__(f"Adapted length ratio {ratio:.2f} outside [{low:.2f}, {high:.2f}]")


class AdaptationError(StoryLocalizerError):
    code = "adaptation_failed"


class SceneSplitError(StoryLocalizerError):
    code = "scene_split_failed"


class SceneFailureThresholdError(StoryLocalizerError):
    code = "scene_failure_threshold"

    def __init__(self, stage: str, failed: int, total: int, tolerance: float):
        self.stage = stage
        self.failed = failed
        self.total = total
        super().__init__(
            f"{stage.capitalize()} generation failed for {failed} of {total} scenes "
            f"(tolerance {tolerance:.0%})"
        )


class ArchiveError(StoryLocalizerError):
    code = "archive_failed"


class ArchiveNotFoundError(StoryLocalizerError):
    code = "archive_not_found"
    status_code = 404

    def __init__(self, story_id: str):
        super().__init__(f"Story {story_id} has no archive")
