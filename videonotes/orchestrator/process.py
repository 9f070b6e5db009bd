from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable, List, Optional

from videonotes.errors import TranscriptionError
from videonotes.models import GenerationResult, PayloadCandidate
from videonotes.utils.events import (
    ErrorRecord,
    EventEmitter,
    Record,
    ResultRecord,
    StatusEvent,
    UploadProgress,
    describe,
)
from videonotes.utils.telemetry import (
    TelemetryContext,
    create_request_id,
    serialize_error,
    track_event,
    track_span,
)

if TYPE_CHECKING:
    from videonotes.use_cases.transcribe import TranscribeVideoUseCase

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "Failed to process video. Check server logs for details."

_END = object()

# Validation failures get their own event; everything else is process_error
_FAILURE_EVENTS = {
    "missing_input": "process_missing_input",
    "unsupported_media_type": "process_invalid_upload_type",
    "payload_too_large": "process_upload_too_large",
    "payload_size_mismatch": "process_upload_size_mismatch",
    "invalid_locator": "process_invalid_video_url",
}


class ProcessState(Enum):
    """State of a transcription run."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


_TERMINAL_STATES = (ProcessState.COMPLETED, ProcessState.FAILED, ProcessState.CANCELLED)


class TranscriptionProcess:
    """
    One transcription run, consumed as an ordered stream of records.

    The stream carries StatusEvents and ends after exactly one ResultRecord
    or ErrorRecord. A cancelled run ends the stream with neither.

    Usage:
        process = orchestrator.run(payload=candidate)
        process.on_upload_progress(lambda p: print(f"{p.percent:.1f}%"))

        async with process:
            async for record in process:
                print(encode_ndjson(record), end="")
    """

    def __init__(
        self,
        use_case: "TranscribeVideoUseCase",
        api_key: Optional[str],
        url: Optional[str] = None,
        payload: Optional[PayloadCandidate] = None,
        request_id: Optional[str] = None,
    ):
        self._use_case = use_case
        self._api_key = api_key
        self._url = url
        self._payload = payload
        self._request_id = request_id or create_request_id()
        self._events = EventEmitter()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._state = ProcessState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[GenerationResult] = None
        self._error: Optional[BaseException] = None
        self._closed = False
        self._close_callbacks: List[Callable[["TranscriptionProcess"], None]] = []

    # Side-channel subscriptions
    def on_upload_progress(self, callback: Callable[[UploadProgress], None]):
        """Called as payload bytes are sent. Receives UploadProgress."""
        self._events.on("upload_progress", callback)

    def on_status(self, callback: Callable[[StatusEvent], None]):
        """Called for every StatusEvent, in order."""
        self._events.on("status", callback)

    def on_result(self, callback: Callable[[GenerationResult], None]):
        self._events.on("result", callback)

    def on_error(self, callback: Callable[[BaseException], None]):
        self._events.on("error", callback)

    def on_close(self, callback: Callable[["TranscriptionProcess"], None]):
        """Called once when the record stream ends, however the run ended."""
        if self._closed:
            callback(self)
        else:
            self._close_callbacks.append(callback)

    # Control methods
    async def start(self):
        """Start the run (non-blocking)."""
        if self._state != ProcessState.PENDING:
            raise RuntimeError(f"Cannot start process in state: {self._state}")

        self._state = ProcessState.RUNNING
        self._task = asyncio.create_task(self._run())

    async def cancel(self):
        """Cancel the run; no result or error record is emitted."""
        if self._state in _TERMINAL_STATES:
            return

        self._state = ProcessState.CANCELLED
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._close()

    async def wait(self) -> GenerationResult:
        """Wait for the run to finish; return its result or raise its error."""
        if self._state == ProcessState.PENDING:
            await self.start()

        if self._task:
            await self._task

        if self._state == ProcessState.CANCELLED:
            raise asyncio.CancelledError()
        if self._error is not None:
            raise self._error
        assert self._result is not None
        return self._result

    async def __aenter__(self):
        if self._state == ProcessState.PENDING:
            await self.start()
        return self

    async def __aexit__(self, *args):
        await self.cancel()

    async def __aiter__(self) -> AsyncIterator[Record]:
        if self._state == ProcessState.PENDING:
            await self.start()

        finished = False
        try:
            while True:
                record = await self._queue.get()
                if record is _END:
                    # Leave the marker for any later or concurrent reader
                    self._queue.put_nowait(_END)
                    finished = True
                    return
                yield record
        finally:
            # Consumer went away before the stream ended
            if not finished and self._task and not self._task.done():
                self._task.cancel()

    # State properties
    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def closed(self) -> bool:
        """True once the record stream has been terminated."""
        return self._closed

    @property
    def request_id(self) -> str:
        return self._request_id

    @property
    def result(self) -> Optional[GenerationResult]:
        return self._result

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    # Internals
    def _close(self):
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)
        for callback in self._close_callbacks:
            callback(self)
        self._close_callbacks.clear()

    async def _publish(self, record: Record):
        if self._closed:
            return
        logger.debug("[%s] record %s", self._request_id, describe(record))
        self._queue.put_nowait(record)
        if isinstance(record, StatusEvent):
            await self._events.emit("status", record)

    async def _report_bytes(self, sent: int, total: int):
        if not self._events.has_listeners("upload_progress"):
            return
        filename = self._payload.name if self._payload else ""
        await self._events.emit("upload_progress", UploadProgress(filename, sent, total))

    def _source_type(self) -> str:
        if self._payload is not None and self._payload.size_bytes > 0:
            return "upload"
        return "url"

    async def _run(self):
        context = TelemetryContext(request_id=self._request_id, route="transcribe")
        source_type = self._source_type()
        logger.info("[%s] Transcription started (source=%s)", self._request_id, source_type)
        track_event("process_request_received", {"sourceType": source_type}, context, logger)

        try:
            async with track_span("transcribe_run", {"sourceType": source_type}, context, logger):
                result = await self._use_case.execute(
                    self._api_key,
                    self._publish,
                    url=self._url,
                    payload=self._payload,
                    progress_callback=self._report_bytes,
                    context=context,
                )
        except asyncio.CancelledError:
            self._state = ProcessState.CANCELLED
            logger.info("[%s] Transcription cancelled", self._request_id)
            raise
        except TranscriptionError as exc:
            self._error = exc
            self._state = ProcessState.FAILED
            logger.warning("[%s] Transcription failed: %s", self._request_id, exc)
            event_name = _FAILURE_EVENTS.get(exc.kind, "process_error")
            event_data = dict(exc.detail(), kind=exc.kind)
            if event_name == "process_error":
                event_data["error"] = serialize_error(exc)
            track_event(event_name, event_data, context, logger)
            await self._publish(ErrorRecord(exc.user_message, exc.kind))
            await self._events.emit("error", exc)
        except Exception as exc:
            self._error = exc
            self._state = ProcessState.FAILED
            logger.error("[%s] Transcription crashed: %s", self._request_id, exc, exc_info=True)
            track_event("process_error", {"error": serialize_error(exc)}, context, logger)
            await self._publish(ErrorRecord(GENERIC_ERROR_MESSAGE))
            await self._events.emit("error", exc)
        else:
            self._result = result
            self._state = ProcessState.COMPLETED
            logger.info("[%s] Transcription complete (model=%s)", self._request_id, result.model)
            track_event("process_success", {"sourceType": source_type}, context, logger)
            await self._publish(ResultRecord(result))
            await self._events.emit("result", result)
        finally:
            self._close()
