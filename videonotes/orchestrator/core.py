"""Core orchestrator - owns the transport client and starts transcription runs."""
import logging
from typing import Optional, Set

from ..models import GenerationResult, PayloadCandidate, TranscribeConfig, resolve_api_key
from ..protocols import ITransportClient, SleepFunc
from ..services.gemini_client import GeminiFilesClient
from ..services.poller import BackoffPoller
from ..use_cases.transcribe import TranscribeVideoUseCase
from .process import TranscriptionProcess

logger = logging.getLogger(__name__)


class TranscriptionOrchestrator:
    """
    Orchestrates transcription runs using injected services.

    Usage:
        async with TranscriptionOrchestrator(api_key) as orchestrator:
            process = orchestrator.run(url="https://youtube.com/watch?v=abc")
            async for record in process:
                ...

        # Or just the final result
        async with TranscriptionOrchestrator(api_key) as orchestrator:
            result = await orchestrator.transcribe(payload=candidate)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[TranscribeConfig] = None,
        client: Optional[ITransportClient] = None,
        sleep: Optional[SleepFunc] = None,
    ):
        """
        Initialize orchestrator with dependencies.

        Args:
            api_key: Gemini API key; falls back to GEMINI_API_KEY / GOOGLE_API_KEY
            config: Transcription configuration
            client: Pre-built transport client (tests); otherwise an HTTP client is opened
            sleep: Poll sleep function (tests); defaults to asyncio.sleep
        """
        self._api_key = api_key if api_key is not None else resolve_api_key()
        self._config = config or TranscribeConfig()
        self._external_client = client
        self._sleep = sleep

        # Initialized in __aenter__
        self._client: Optional[ITransportClient] = None
        self._http_client: Optional[GeminiFilesClient] = None
        self._use_case: Optional[TranscribeVideoUseCase] = None
        self._processes: Set[TranscriptionProcess] = set()

    async def __aenter__(self):
        if self._external_client is not None:
            self._client = self._external_client
        else:
            self._http_client = GeminiFilesClient(self._config)
            await self._http_client.__aenter__()
            self._client = self._http_client

        poller = BackoffPoller(self._client, self._config, sleep=self._sleep)
        self._use_case = TranscribeVideoUseCase(self._client, self._config, poller=poller)
        return self

    async def __aexit__(self, *args):
        """Cancel unfinished runs, then release the HTTP client."""
        for process in list(self._processes):
            await process.cancel()
        self._processes.clear()
        if self._http_client:
            await self._http_client.__aexit__(*args)
            self._http_client = None

    @property
    def config(self) -> TranscribeConfig:
        return self._config

    @property
    def active_processes(self) -> int:
        """Runs created by this orchestrator whose stream is still open."""
        return len(self._processes)

    def run(
        self,
        url: Optional[str] = None,
        payload: Optional[PayloadCandidate] = None,
        request_id: Optional[str] = None,
    ) -> TranscriptionProcess:
        """Create a run for the given input. Iterate or ``wait()`` to start it."""
        assert self._use_case is not None, "Use 'async with' before run()"
        process = TranscriptionProcess(
            self._use_case,
            self._api_key,
            url=url,
            payload=payload,
            request_id=request_id,
        )
        self._processes.add(process)
        process.on_close(self._processes.discard)
        return process

    async def transcribe(
        self,
        url: Optional[str] = None,
        payload: Optional[PayloadCandidate] = None,
    ) -> GenerationResult:
        """Run to completion and return the result (raises on failure)."""
        return await self.run(url=url, payload=payload).wait()
