"""Error taxonomy for the caption generation pipeline"""

from typing import Optional


class CaptionPipelineError(Exception):
    """Base class for every error the pipeline raises to its callers"""

    user_message = "Something went wrong while generating captions. Please try again."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message:
            self.user_message = user_message


class NoImages(CaptionPipelineError):
    """Generation was requested with an empty media set"""

    user_message = "Please upload at least one image first."


class MediaTooLarge(CaptionPipelineError):
    """An image stayed over the payload budget after every compression tier"""

    user_message = "This image is too large to process. Try a smaller image or reduce its quality."

    def __init__(self, estimated_bytes: int, budget_bytes: int, attempts: int):
        self.estimated_bytes = estimated_bytes
        self.budget_bytes = budget_bytes
        self.attempts = attempts
        super().__init__(
            f"Image exceeds payload budget: ~{estimated_bytes}B > {budget_bytes}B "
            f"after {attempts} compression rounds"
        )


class UnreadableFile(CaptionPipelineError):
    """The input could not be loaded or decoded as an image"""

    user_message = "This file could not be read as an image. Please use a JPEG, PNG, WebP or GIF."


class GenerationFailed(CaptionPipelineError):
    """The provider call could not produce a usable result"""


class ProviderFatalError(GenerationFailed):
    """Non-retryable provider rejection (bad request, auth failure, ...)"""

    user_message = "The caption service rejected the request. Please check your settings and try again."

    def __init__(self, message: str, status_code: Optional[int] = None, user_message: Optional[str] = None):
        self.status_code = status_code
        super().__init__(message, user_message=user_message)


class StaleGeneration(GenerationFailed):
    """A newer generation call superseded this one before it resolved"""

    user_message = "A newer caption request replaced this one."

    def __init__(self, generation_id: int, latest_id: int):
        self.generation_id = generation_id
        self.latest_id = latest_id
        super().__init__(f"Generation {generation_id} superseded by {latest_id}")


class ProviderTransientError(CaptionPipelineError):
    """Retryable provider failure; only used inside the retry loop"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RetryExhausted(CaptionPipelineError):
    """Every attempt of a retried operation failed with a transient error"""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
