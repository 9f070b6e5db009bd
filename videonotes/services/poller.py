"""Capped exponential backoff polling of a remote file until it is usable."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Iterator, Optional

from ..errors import PollingCeilingReached, RemoteProcessingFailed
from ..models import BackoffState, FileState, RemoteFileHandle, TranscribeConfig
from ..protocols import ITransportClient, SleepFunc
from ..utils.events import FileActive, FileProcessing, StatusEvent

logger = logging.getLogger(__name__)

EmitFunc = Callable[[StatusEvent], Awaitable[None]]


def backoff_delays(
    initial_ms: int = 100,
    maximum_ms: int = 20000,
) -> Iterator[int]:
    """Yield the delay sequence 100, 200, 400, ... capped at ``maximum_ms``."""
    state = BackoffState(delay_ms=initial_ms, attempt=1, max_delay_ms=maximum_ms)
    while True:
        yield state.delay_ms
        state.advance()


class BackoffPoller:
    """
    Wait for a freshly uploaded file to leave the PROCESSING state.

    No ceiling applies unless the config sets ``max_poll_attempts`` or
    ``max_poll_seconds``.
    """

    def __init__(
        self,
        client: ITransportClient,
        config: Optional[TranscribeConfig] = None,
        sleep: Optional[SleepFunc] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._client = client
        self._config = config or TranscribeConfig()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock

    def _check_ceiling(self, backoff: BackoffState, started: float) -> None:
        elapsed = self._clock() - started
        max_attempts = self._config.max_poll_attempts
        max_seconds = self._config.max_poll_seconds
        if max_attempts is not None and backoff.attempt > max_attempts:
            raise PollingCeilingReached(backoff.attempt - 1, elapsed)
        if max_seconds is not None and elapsed >= max_seconds:
            raise PollingCeilingReached(backoff.attempt - 1, elapsed)

    async def wait_until_active(
        self,
        api_key: str,
        handle: RemoteFileHandle,
        emit: EmitFunc,
    ) -> RemoteFileHandle:
        """Poll ``handle`` until ACTIVE; raise RemoteProcessingFailed otherwise."""
        backoff = self._config.new_backoff()
        started = self._clock()
        file_name = handle.name

        while handle.state == FileState.PROCESSING:
            handle = await self._client.get_file_status(api_key, file_name)
            if handle.state != FileState.PROCESSING:
                break

            self._check_ceiling(backoff, started)
            logger.debug(
                "File %s still processing (attempt %d, next check in %d ms)",
                file_name,
                backoff.attempt,
                backoff.delay_ms,
            )
            await emit(FileProcessing(file_name, backoff.attempt, backoff.delay_ms))
            await self._sleep(backoff.delay_ms / 1000)
            backoff.advance()

        if handle.state != FileState.ACTIVE:
            raise RemoteProcessingFailed(handle.state.value, handle.error_message)

        await emit(FileActive(file_name))
        return handle
