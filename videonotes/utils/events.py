"""Status events, stream records and the byte-progress side channel."""
from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Dict, List, Optional, Union

from videonotes.models import FileState, GenerationResult

logger = logging.getLogger(__name__)


def _format_backoff_seconds(ms: int) -> str:
    return f"{ms / 1000:.1f}"


class StatusEvent:
    """Base class for progress events emitted during a run."""

    type: ClassVar[str] = "status"
    phase: ClassVar[str] = "update"

    @property
    def message(self) -> str:
        return "Processing update received."

    def detail(self) -> Dict[str, Any]:
        return {}

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "phase": self.phase,
            "message": self.message,
            "detail": self.detail(),
        }


@dataclass(frozen=True)
class UploadStart(StatusEvent):
    phase: ClassVar[str] = "uploading"

    name: str
    mime_type: str
    size_bytes: int

    @property
    def message(self) -> str:
        size_mb = round(self.size_bytes / (1024 * 1024))
        return f"Server uploading to Gemini: {self.name} ({size_mb} MB)."

    def detail(self) -> Dict[str, Any]:
        return {"fileName": self.name, "mimeType": self.mime_type, "sizeBytes": self.size_bytes}


@dataclass(frozen=True)
class UploadComplete(StatusEvent):
    phase: ClassVar[str] = "upload-complete"

    name: str
    state: FileState

    @property
    def message(self) -> str:
        return f"Gemini upload complete. File state: {self.state.value}."

    def detail(self) -> Dict[str, Any]:
        return {"fileName": self.name, "state": self.state.value}


@dataclass(frozen=True)
class FileProcessing(StatusEvent):
    phase: ClassVar[str] = "file-processing"

    name: str
    attempt: int
    next_delay_ms: int

    @property
    def message(self) -> str:
        return (
            f"Gemini file still PROCESSING. Backoff attempt {self.attempt}; "
            f"next check in {_format_backoff_seconds(self.next_delay_ms)}s."
        )

    def detail(self) -> Dict[str, Any]:
        return {"fileName": self.name, "attempt": self.attempt, "nextDelayMs": self.next_delay_ms}


@dataclass(frozen=True)
class FileActive(StatusEvent):
    phase: ClassVar[str] = "file-active"

    name: str

    @property
    def message(self) -> str:
        return "Gemini file is ACTIVE. Sending generation request."

    def detail(self) -> Dict[str, Any]:
        return {"fileName": self.name}


@dataclass(frozen=True)
class GenerateStart(StatusEvent):
    phase: ClassVar[str] = "generate-start"

    model: str

    @property
    def message(self) -> str:
        return f"Gemini generation started ({self.model}). Waiting for response."

    def detail(self) -> Dict[str, Any]:
        return {"model": self.model}


@dataclass(frozen=True)
class GenerateReceived(StatusEvent):
    phase: ClassVar[str] = "generate-received"

    model: str

    @property
    def message(self) -> str:
        return "Gemini response received. Parsing output."

    def detail(self) -> Dict[str, Any]:
        return {"model": self.model}


@dataclass(frozen=True)
class ResultRecord:
    """Terminal success record."""

    type: ClassVar[str] = "result"

    result: GenerationResult

    def to_record(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ok": True,
            "transcript": self.result.transcript,
            "notes": list(self.result.notes),
            "debug": {
                "model": self.result.model,
                "estimatedCostUsd": self.result.estimated_cost_usd,
            },
        }
        if self.result.raw_response_fallback is not None:
            data["rawResponseFallback"] = self.result.raw_response_fallback
        return {"type": self.type, "data": data}


@dataclass(frozen=True)
class ErrorRecord:
    """Terminal failure record."""

    type: ClassVar[str] = "error"

    message: str
    kind: str = "error"

    def to_record(self) -> Dict[str, Any]:
        return {"type": self.type, "message": self.message}


Record = Union[StatusEvent, ResultRecord, ErrorRecord]


def encode_ndjson(record: Record) -> str:
    """Frame one record as a newline-terminated JSON line."""
    return json.dumps(record.to_record(), ensure_ascii=False) + "\n"


@dataclass
class UploadProgress:
    """Byte progress for an upload in flight."""
    filename: str
    bytes_uploaded: int = 0
    total_bytes: int = 0

    @property
    def percent(self) -> float:
        if self.total_bytes <= 0:
            return 0.0
        return min(100.0, self.bytes_uploaded * 100.0 / self.total_bytes)


class EventEmitter:
    """Simple event emitter for side-channel events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        listeners = self._listeners.setdefault(event_name, [])
        if callback not in listeners:
            listeners.append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        listeners = self._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners.

        A failing listener is logged and skipped; it never aborts the run.
        """
        for callback in self._listeners.get(event_name, [])[:]:
            try:
                result = callback(*args, **kwargs)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error("Error in event listener for %s: %s", event_name, e)


def describe(record: Optional[Record]) -> str:
    """Short one-line description of a record for logs."""
    if record is None:
        return "<none>"
    if isinstance(record, StatusEvent):
        return f"status:{record.phase}"
    return record.type
