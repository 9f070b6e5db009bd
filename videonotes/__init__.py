"""
videonotes - Transcribe videos and summarize them into notes with Gemini.

A run uploads a local video (or points the model at a URL), waits for the
remote file to finish processing, asks the model for a transcript plus bullet
notes and parses whatever comes back.

Usage:
    from videonotes import TranscriptionOrchestrator, PayloadCandidate

    # Stream progress records as they happen
    async with TranscriptionOrchestrator(api_key) as orchestrator:
        process = orchestrator.run(payload=PayloadCandidate.from_path(video_path))
        async for record in process:
            print(record.to_record())

    # Remote video, result only
    async with TranscriptionOrchestrator(api_key) as orchestrator:
        result = await orchestrator.transcribe(url="https://youtube.com/watch?v=abc123")
        print(result.transcript)
        print(result.notes_text)
"""
from .errors import (
    InvalidLocator,
    MissingCredential,
    MissingInput,
    PayloadSizeMismatch,
    PayloadTooLarge,
    PollingCeilingReached,
    RemoteProcessingFailed,
    TranscriptionError,
    TransportError,
    UnsupportedMediaType,
    ValidationError,
)
from .models import (
    FileState,
    GenerationResult,
    LocalPayload,
    PayloadCandidate,
    RemoteFileHandle,
    RemoteSource,
    TranscribeConfig,
)
from .orchestrator import ProcessState, TranscriptionOrchestrator, TranscriptionProcess
from .services import GeminiFilesClient, parse_response
from .utils.events import ErrorRecord, ResultRecord, StatusEvent, encode_ndjson

__version__ = "0.1.0"
__all__ = [
    # Main
    "TranscriptionOrchestrator",
    "TranscriptionProcess",
    "ProcessState",
    # Models
    "FileState",
    "GenerationResult",
    "LocalPayload",
    "PayloadCandidate",
    "RemoteFileHandle",
    "RemoteSource",
    "TranscribeConfig",
    # Records
    "StatusEvent",
    "ResultRecord",
    "ErrorRecord",
    "encode_ndjson",
    # Services
    "GeminiFilesClient",
    "parse_response",
    # Errors
    "TranscriptionError",
    "ValidationError",
    "MissingInput",
    "InvalidLocator",
    "UnsupportedMediaType",
    "PayloadTooLarge",
    "PayloadSizeMismatch",
    "MissingCredential",
    "TransportError",
    "RemoteProcessingFailed",
    "PollingCeilingReached",
]
