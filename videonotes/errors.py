"""Error hierarchy for transcription runs.

Every error carries a ``user_message`` that is safe to forward to the caller
as the terminal ``error`` record of a run.
"""
from typing import Any, Dict, Optional


class TranscriptionError(Exception):
    """Base class for all failures that terminate a run."""

    kind = "error"

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message

    def detail(self) -> Dict[str, Any]:
        """Structured fields for telemetry."""
        return {}


class ValidationError(TranscriptionError):
    """Input rejected before any remote call was made."""

    kind = "validation_error"


class MissingInput(ValidationError):
    kind = "missing_input"

    def __init__(self):
        super().__init__(
            "Neither a video URL nor an upload payload was provided",
            "Provide a YouTube URL or upload a video file (.mp4, .mov, .webm).",
        )


class InvalidLocator(ValidationError):
    kind = "invalid_locator"

    def __init__(self, locator: str):
        super().__init__(
            f"Invalid video URL: {locator!r}",
            "videoUrl must be a valid http(s) link.",
        )
        self.locator = locator

    def detail(self) -> Dict[str, Any]:
        return {"videoUrl": self.locator}


class UnsupportedMediaType(ValidationError):
    kind = "unsupported_media_type"

    def __init__(self, mime_type: str):
        super().__init__(
            f"Unsupported upload mime type: {mime_type!r}",
            f"Unsupported file type: {mime_type or 'unknown'}.",
        )
        self.mime_type = mime_type

    def detail(self) -> Dict[str, Any]:
        return {"mimeType": self.mime_type}


class PayloadTooLarge(ValidationError):
    kind = "payload_too_large"

    def __init__(self, size_bytes: int, max_bytes: int):
        max_gb = max_bytes / (1024 ** 3)
        super().__init__(
            f"Upload of {size_bytes} bytes exceeds limit of {max_bytes} bytes",
            f"File too large. Please upload a video smaller than {max_gb:g} GB.",
        )
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes

    def detail(self) -> Dict[str, Any]:
        return {"sizeBytes": self.size_bytes, "maxBytes": self.max_bytes}


class PayloadSizeMismatch(ValidationError):
    """Declared upload size disagrees with the bytes actually supplied."""

    kind = "payload_size_mismatch"

    def __init__(self, declared_bytes: int, actual_bytes: int):
        super().__init__(
            f"Upload declared {declared_bytes} bytes but carries {actual_bytes}",
            "Uploaded file is incomplete or corrupted. Please try again.",
        )
        self.declared_bytes = declared_bytes
        self.actual_bytes = actual_bytes

    def detail(self) -> Dict[str, Any]:
        return {"sizeBytes": self.declared_bytes, "actualBytes": self.actual_bytes}


class MissingCredential(TranscriptionError):
    kind = "missing_credential"

    def __init__(self, variable: str = "GEMINI_API_KEY"):
        super().__init__(f"Missing {variable} environment variable.")
        self.variable = variable


class TransportError(TranscriptionError):
    """Remote call failed, or its response was missing expected fields."""

    kind = "transport_error"

    def __init__(self, message: str, status_code: Optional[int] = None, detail=None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class RemoteProcessingFailed(TranscriptionError):
    """Remote file settled into a state other than ACTIVE."""

    kind = "remote_processing_failed"

    def __init__(self, state_observed: str, remote_error_message: Optional[str] = None):
        message = f"Gemini file processing failed with state {state_observed}"
        if remote_error_message:
            message = f"{message}: {remote_error_message}"
        super().__init__(message)
        self.state_observed = state_observed
        self.remote_error_message = remote_error_message


class PollingCeilingReached(RemoteProcessingFailed):
    """File was still PROCESSING when the configured poll ceiling ran out."""

    kind = "polling_ceiling_reached"

    def __init__(self, attempts: int, elapsed_seconds: float):
        super().__init__(
            "PROCESSING",
            f"still processing after {attempts} checks ({elapsed_seconds:.1f}s)",
        )
        self.attempts = attempts
        self.elapsed_seconds = elapsed_seconds
