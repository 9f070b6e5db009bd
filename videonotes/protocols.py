"""
Protocols (Interfaces) for Dependency Inversion.

The orchestration layer depends on these, never on httpx directly.
"""
from typing import Awaitable, Callable, Optional, Protocol, Union, runtime_checkable

from .models import LocalPayload, RemoteFileHandle

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]
SleepFunc = Callable[[float], Awaitable[None]]


@runtime_checkable
class ITransportClient(Protocol):
    """Interface for the remote upload/poll/generate contract."""

    async def begin_upload(
        self,
        api_key: str,
        display_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> str:
        """Open a resumable upload session and return its URL."""
        ...

    async def send_payload(
        self,
        session_url: str,
        payload: LocalPayload,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RemoteFileHandle:
        """Stream the payload to the session and return the created file."""
        ...

    async def get_file_status(self, api_key: str, file_name: str) -> RemoteFileHandle:
        """Fetch the current state of a remote file."""
        ...

    async def generate(
        self,
        api_key: str,
        model_id: str,
        prompt_text: str,
        attached_file: Optional[RemoteFileHandle] = None,
    ) -> str:
        """Run a generation request and return the first text fragment."""
        ...
