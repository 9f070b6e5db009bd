"""Use case for the upload, poll and generate workflow of a single run."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from videonotes.errors import MissingCredential, RemoteProcessingFailed, TransportError
from videonotes.models import (
    FileState,
    GenerationResult,
    LocalPayload,
    PayloadCandidate,
    RemoteFileHandle,
    RemoteSource,
    Source,
    TranscribeConfig,
)
from videonotes.protocols import ITransportClient, ProgressCallback
from videonotes.services.poller import BackoffPoller
from videonotes.services.prompts import build_prompt
from videonotes.services.response_parser import parse_response
from videonotes.use_cases.prepare_source import PrepareSourceUseCase
from videonotes.utils.events import (
    GenerateReceived,
    GenerateStart,
    StatusEvent,
    UploadComplete,
    UploadStart,
)
from videonotes.utils.telemetry import TelemetryContext, track_event, track_span

logger = logging.getLogger(__name__)

EmitFunc = Callable[[StatusEvent], Awaitable[None]]


class UploadAndActivateUseCase:
    """Upload a local payload and wait until the remote file is ACTIVE."""

    def __init__(self, client: ITransportClient, poller: BackoffPoller):
        self._client = client
        self._poller = poller

    async def execute(
        self,
        api_key: str,
        source: LocalPayload,
        emit: EmitFunc,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RemoteFileHandle:
        await emit(UploadStart(source.name, source.mime_type, source.size_bytes))

        session_url = await self._client.begin_upload(
            api_key, source.name, source.mime_type, source.size_bytes
        )
        handle = await self._client.send_payload(session_url, source, progress_callback)
        logger.info("Upload complete: %s -> %s (%s)", source.name, handle.name, handle.state.value)

        await emit(UploadComplete(handle.name or source.name, handle.state))
        if not handle.is_complete:
            raise TransportError("Gemini file upload missing file metadata.")

        if handle.state in (FileState.PROCESSING, FileState.ACTIVE):
            return await self._poller.wait_until_active(api_key, handle, emit)
        raise RemoteProcessingFailed(handle.state.value, handle.error_message)


class TranscribeVideoUseCase:
    """Execute one transcription run from raw input to GenerationResult."""

    def __init__(
        self,
        client: ITransportClient,
        config: Optional[TranscribeConfig] = None,
        prepare_source: Optional[PrepareSourceUseCase] = None,
        poller: Optional[BackoffPoller] = None,
    ):
        self._client = client
        self._config = config or TranscribeConfig()
        self._prepare_source = prepare_source or PrepareSourceUseCase(
            self._config.max_upload_bytes
        )
        self._upload = UploadAndActivateUseCase(
            client, poller or BackoffPoller(client, self._config)
        )

    async def execute(
        self,
        api_key: Optional[str],
        emit: EmitFunc,
        url: Optional[str] = None,
        payload: Optional[PayloadCandidate] = None,
        progress_callback: Optional[ProgressCallback] = None,
        context: Optional[TelemetryContext] = None,
    ) -> GenerationResult:
        source = self._prepare_source.execute(url, payload)
        if not api_key:
            raise MissingCredential()

        source_type = "upload" if isinstance(source, LocalPayload) else "url"
        track_event("process_start_gemini", {"sourceType": source_type}, context, logger)
        async with track_span("gemini_transcribe", {"sourceType": source_type}, context, logger):
            return await self._transcribe(api_key, source, emit, progress_callback)

    async def _transcribe(
        self,
        api_key: str,
        source: Source,
        emit: EmitFunc,
        progress_callback: Optional[ProgressCallback],
    ) -> GenerationResult:
        prompt = build_prompt(source)
        attached: Optional[RemoteFileHandle] = None
        if isinstance(source, LocalPayload):
            attached = await self._upload.execute(api_key, source, emit, progress_callback)
        elif isinstance(source, RemoteSource):
            logger.debug("Remote source %s; skipping upload", source.locator)
        else:
            raise TypeError(f"Unsupported source type: {type(source).__name__}")

        model = self._config.model
        await emit(GenerateStart(model))
        raw_text = await self._client.generate(api_key, model, prompt, attached)
        await emit(GenerateReceived(model))

        parsed = parse_response(raw_text)
        return GenerationResult(
            transcript=parsed.transcript,
            notes=parsed.notes,
            model=model,
            estimated_cost_usd=0.0,
            raw_response_fallback=parsed.raw_response_fallback,
        )
