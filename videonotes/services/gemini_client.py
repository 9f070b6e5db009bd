"""HTTP adapter for the Gemini files and generation endpoints."""
from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from ..errors import TransportError
from ..models import LocalPayload, RemoteFileHandle, TranscribeConfig
from ..protocols import ProgressCallback

logger = logging.getLogger(__name__)


def _model_path(model_id: str) -> str:
    return model_id if model_id.startswith("models/") else f"models/{model_id}"


def _file_path(file_name: str) -> str:
    return file_name if file_name.startswith("files/") else f"files/{file_name}"


def _extract_first_text(body: Dict[str, Any]) -> Optional[str]:
    candidates = body.get("candidates") or []
    if not candidates or not isinstance(candidates[0], dict):
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        if isinstance(part, dict) and isinstance(part.get("text"), str) and part["text"]:
            return part["text"]
    return None


class GeminiFilesClient:
    """
    HTTP client adapter for the Gemini REST API.

    Implements ITransportClient. Calls are never retried here; a failed call
    raises TransportError and retrying is up to the caller.
    """

    def __init__(
        self,
        config: Optional[TranscribeConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._config = config or TranscribeConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.request_timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("GeminiFilesClient not initialized. Use 'async with' context.")
        return self._client

    async def _request(
        self,
        method: str,
        url: str,
        api_key: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs,
    ) -> httpx.Response:
        client = self._require_client()
        request_headers = dict(headers or {})
        if api_key:
            request_headers["x-goog-api-key"] = api_key
        # Session URLs carry upload tokens; keep them out of messages
        label = url.split("?", 1)[0]

        try:
            response = await client.request(method, url, headers=request_headers, **kwargs)
        except httpx.RequestError as exc:
            raise TransportError(f"{method} {label} failed: {exc}") from exc

        if not response.is_success:
            try:
                error_detail = response.json()
            except ValueError:
                error_detail = response.text
            raise TransportError(
                f"Gemini API error {response.status_code} on {method} {label}: {error_detail}",
                status_code=response.status_code,
                detail=error_detail,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise TransportError(
                f"Unparsable {what} response body", status_code=response.status_code
            ) from exc
        if not isinstance(body, dict):
            raise TransportError(
                f"Unexpected {what} response body", status_code=response.status_code, detail=body
            )
        return body

    async def begin_upload(
        self,
        api_key: str,
        display_name: str,
        mime_type: str,
        size_bytes: int,
    ) -> str:
        version = self._config.api_version
        response = await self._request(
            "POST",
            f"/upload/{version}/files",
            api_key=api_key,
            headers={
                "X-Goog-Upload-Protocol": "resumable",
                "X-Goog-Upload-Command": "start",
                "X-Goog-Upload-Header-Content-Length": str(size_bytes),
                "X-Goog-Upload-Header-Content-Type": mime_type,
            },
            json={"file": {"display_name": display_name}},
        )
        session_url = response.headers.get("x-goog-upload-url")
        if not session_url:
            raise TransportError(
                "Gemini upload start response missing session locator",
                status_code=response.status_code,
            )
        logger.debug("Upload session opened for %s (%d bytes)", display_name, size_bytes)
        return session_url

    async def _iter_chunks(
        self,
        payload: LocalPayload,
        progress_callback: Optional[ProgressCallback],
    ) -> AsyncIterator[bytes]:
        chunk_size = self._config.chunk_size
        sent = 0

        async def report():
            if progress_callback is None:
                return
            result = progress_callback(sent, payload.size_bytes)
            if inspect.isawaitable(result):
                await result

        if isinstance(payload.content, Path):
            with payload.content.open("rb") as handle:
                while True:
                    chunk = await asyncio.to_thread(handle.read, chunk_size)
                    if not chunk:
                        break
                    sent += len(chunk)
                    yield chunk
                    await report()
        else:
            data = memoryview(payload.content)
            for offset in range(0, len(data), chunk_size):
                chunk = bytes(data[offset:offset + chunk_size])
                sent += len(chunk)
                yield chunk
                await report()

        if sent != payload.size_bytes:
            raise TransportError(
                f"Payload {payload.name} sent {sent} bytes, declared {payload.size_bytes}"
            )

    async def send_payload(
        self,
        session_url: str,
        payload: LocalPayload,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> RemoteFileHandle:
        response = await self._request(
            "POST",
            session_url,
            headers={
                "Content-Length": str(payload.size_bytes),
                "X-Goog-Upload-Offset": "0",
                "X-Goog-Upload-Command": "upload, finalize",
            },
            content=self._iter_chunks(payload, progress_callback),
        )
        body = self._json(response, "upload")
        file_data = body.get("file")
        if not isinstance(file_data, dict):
            raise TransportError(
                "Gemini upload response missing file metadata",
                status_code=response.status_code,
                detail=body,
            )
        return RemoteFileHandle.from_api(file_data)

    async def get_file_status(self, api_key: str, file_name: str) -> RemoteFileHandle:
        response = await self._request(
            "GET",
            f"/{self._config.api_version}/{_file_path(file_name)}",
            api_key=api_key,
        )
        return RemoteFileHandle.from_api(self._json(response, "file status"))

    async def generate(
        self,
        api_key: str,
        model_id: str,
        prompt_text: str,
        attached_file: Optional[RemoteFileHandle] = None,
    ) -> str:
        parts = [{"text": prompt_text}]
        if attached_file is not None:
            parts.append(
                {"fileData": {"mimeType": attached_file.mime_type, "fileUri": attached_file.uri}}
            )

        response = await self._request(
            "POST",
            f"/{self._config.api_version}/{_model_path(model_id)}:generateContent",
            api_key=api_key,
            json={
                "contents": [{"role": "user", "parts": parts}],
                "generationConfig": {
                    "temperature": self._config.temperature,
                    "maxOutputTokens": self._config.max_output_tokens,
                },
            },
        )
        body = self._json(response, "generation")
        raw_text = _extract_first_text(body)
        if not raw_text:
            raise TransportError(
                "Gemini response missing content.",
                status_code=response.status_code,
                detail=body.get("promptFeedback"),
            )
        return raw_text
