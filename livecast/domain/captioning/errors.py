"""Failure taxonomy of the captioning pipeline and its collaborators."""


class ServiceError(Exception):
    """Failure reported by an external collaborator (transcription, translation, storage)."""


class TransientServiceError(ServiceError):
    """Retryable failure: timeout, 5xx-class response, temporary overload."""


class PermanentServiceError(ServiceError):
    """Non-retryable failure: invalid input, authentication, quota exhausted."""


class CaptionPipelineError(Exception):
    """Base class for failures surfaced by the captioning pipeline."""


class SourceUnavailable(CaptionPipelineError):
    """The stream source cannot be read (dropped connection, malformed media)."""

    def __init__(self, locator: str, reason: str) -> None:
        super().__init__(f"Stream source unavailable: {locator}: {reason}")
        self.locator = locator
        self.reason = reason


class ArchiveWriteFailed(CaptionPipelineError):
    def __init__(self, session_id: str, sequence: int, reason: str) -> None:
        super().__init__(f"Archive append failed for {session_id}#{sequence}: {reason}")
        self.session_id = session_id
        self.sequence = sequence
        self.reason = reason


