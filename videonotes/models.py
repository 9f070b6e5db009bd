"""
Models for videonotes.

Immutable dataclasses for sources, remote files, results and configuration.
"""
import mimetypes
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union


DEFAULT_MODEL = "gemini-1.5-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com"
MAX_UPLOAD_BYTES = 2 * 1024 * 1024 * 1024
INITIAL_POLL_DELAY_MS = 100
MAX_POLL_DELAY_MS = 20000

_FALLBACK_MIMES = {
    ".mp4": "video/mp4",
    ".m4v": "video/mp4",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
}


@dataclass(frozen=True)
class RemoteSource:
    """Video referenced by URL; the model is asked to read it directly."""
    locator: str


@dataclass(frozen=True)
class LocalPayload:
    """Video bytes supplied by the caller, uploaded before generation."""
    content: Union[bytes, Path]
    name: str
    mime_type: str
    size_bytes: int

    def __post_init__(self):
        if not self.mime_type.startswith("video/"):
            raise ValueError(f"LocalPayload mime type must be video/*, got {self.mime_type!r}")
        if isinstance(self.content, (bytes, bytearray)) and len(self.content) != self.size_bytes:
            raise ValueError(
                f"LocalPayload size mismatch: declared {self.size_bytes}, got {len(self.content)}"
            )


Source = Union[RemoteSource, LocalPayload]


@dataclass(frozen=True)
class PayloadCandidate:
    """Untrusted upload as received from the caller, before validation."""
    content: Union[bytes, Path]
    name: str
    mime_type: str
    size_bytes: int

    @classmethod
    def from_bytes(cls, data: bytes, name: str, mime_type: str) -> "PayloadCandidate":
        return cls(content=bytes(data), name=name, mime_type=mime_type, size_bytes=len(data))

    @classmethod
    def from_path(cls, path: Path, mime_type: Optional[str] = None) -> "PayloadCandidate":
        path = Path(path)
        guessed, _ = mimetypes.guess_type(str(path))
        guessed = guessed or _FALLBACK_MIMES.get(path.suffix.lower())
        return cls(
            content=path,
            name=path.name,
            mime_type=mime_type or guessed or "",
            size_bytes=path.stat().st_size,
        )


class FileState(Enum):
    """Processing state of a remote file."""
    PROCESSING = "PROCESSING"
    ACTIVE = "ACTIVE"
    FAILED = "FAILED"
    STATE_UNSPECIFIED = "STATE_UNSPECIFIED"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "FileState":
        try:
            return cls(str(raw or "").upper())
        except ValueError:
            return cls.STATE_UNSPECIFIED


@dataclass(frozen=True)
class RemoteFileHandle:
    """Remote file as last reported by the service."""
    name: str
    uri: str
    mime_type: str
    state: FileState
    error_message: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFileHandle":
        error = data.get("error") or {}
        return cls(
            name=data.get("name") or "",
            uri=data.get("uri") or "",
            mime_type=data.get("mimeType") or "",
            state=FileState.parse(data.get("state")),
            error_message=error.get("message") if isinstance(error, dict) else str(error),
        )

    @property
    def is_complete(self) -> bool:
        """True when every field needed to attach the file is present."""
        return bool(self.name and self.uri and self.mime_type)


@dataclass(frozen=True)
class GenerationResult:
    """Final output of one transcription run."""
    transcript: str
    notes: Tuple[str, ...]
    model: str
    estimated_cost_usd: float = 0.0
    raw_response_fallback: Optional[str] = None

    @property
    def notes_text(self) -> str:
        """Notes as bullet lines."""
        return "\n".join(f"• {note}" for note in self.notes)

    @property
    def used_fallback(self) -> bool:
        return self.raw_response_fallback is not None


@dataclass
class BackoffState:
    """Mutable poll delay, doubled after every unsuccessful check."""
    delay_ms: int = INITIAL_POLL_DELAY_MS
    attempt: int = 1
    max_delay_ms: int = MAX_POLL_DELAY_MS

    def advance(self) -> None:
        self.delay_ms = min(self.delay_ms * 2, self.max_delay_ms)
        self.attempt += 1


def _env_int(name: str) -> Optional[int]:
    value = (os.getenv(name) or "").strip()
    return int(value) if value else None


def _env_float(name: str) -> Optional[float]:
    value = (os.getenv(name) or "").strip()
    return float(value) if value else None


@dataclass(frozen=True)
class TranscribeConfig:
    """Immutable configuration for transcription runs."""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    api_version: str = "v1beta"
    initial_poll_delay_ms: int = INITIAL_POLL_DELAY_MS
    max_poll_delay_ms: int = MAX_POLL_DELAY_MS
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    # Poll ceilings are off by default; the service is trusted to settle
    max_poll_attempts: Optional[int] = None
    max_poll_seconds: Optional[float] = None
    chunk_size: int = 8 * 1024 * 1024
    request_timeout: float = 600.0
    temperature: float = 0.2
    max_output_tokens: int = 2048

    def new_backoff(self) -> BackoffState:
        return BackoffState(
            delay_ms=self.initial_poll_delay_ms,
            attempt=1,
            max_delay_ms=self.max_poll_delay_ms,
        )

    @classmethod
    def from_env(cls, **overrides) -> "TranscribeConfig":
        """Build config from GEMINI_* environment variables; overrides win."""
        values: Dict[str, Any] = {}
        model = (os.getenv("GEMINI_MODEL") or "").strip()
        if model:
            values["model"] = model[len("models/"):] if model.startswith("models/") else model
        base_url = (os.getenv("GEMINI_BASE_URL") or "").strip().rstrip("/")
        if base_url:
            values["base_url"] = base_url
        max_attempts = _env_int("GEMINI_MAX_POLL_ATTEMPTS")
        if max_attempts is not None:
            values["max_poll_attempts"] = max_attempts
        max_seconds = _env_float("GEMINI_MAX_POLL_SECONDS")
        if max_seconds is not None:
            values["max_poll_seconds"] = max_seconds
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


def resolve_api_key() -> Optional[str]:
    api_key = (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY") or "").strip()
    return api_key or None
