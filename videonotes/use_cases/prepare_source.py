"""Validate raw caller input into a Source before any remote call."""
from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlparse

from videonotes.errors import (
    InvalidLocator,
    MissingInput,
    PayloadSizeMismatch,
    PayloadTooLarge,
    UnsupportedMediaType,
)
from videonotes.models import (
    MAX_UPLOAD_BYTES,
    LocalPayload,
    PayloadCandidate,
    RemoteSource,
    Source,
)

logger = logging.getLogger(__name__)


def is_http_locator(value: str) -> bool:
    try:
        parsed = urlparse(value)
    except ValueError:
        return False
    return bool(parsed.scheme.lower().startswith("http") and parsed.netloc)


def _has_content(payload: PayloadCandidate) -> bool:
    """Bytes are judged by their real length, paths by the declared size."""
    if isinstance(payload.content, (bytes, bytearray)):
        return len(payload.content) > 0
    return payload.size_bytes > 0


class PrepareSourceUseCase:
    """Normalize a URL and/or upload candidate into a validated Source.

    A non-empty payload wins over a URL. Pure; raises ValidationError.
    """

    def __init__(self, max_upload_bytes: int = MAX_UPLOAD_BYTES):
        self._max_upload_bytes = max_upload_bytes

    def execute(
        self,
        url: Optional[str] = None,
        payload: Optional[PayloadCandidate] = None,
    ) -> Source:
        if payload is not None and _has_content(payload):
            return self._prepare_payload(payload)

        locator = (url or "").strip()
        if locator:
            if not is_http_locator(locator):
                logger.warning("Invalid video URL supplied: %s", locator)
                raise InvalidLocator(locator)
            return RemoteSource(locator=locator)

        raise MissingInput()

    def _prepare_payload(self, payload: PayloadCandidate) -> LocalPayload:
        mime_type = payload.mime_type or ""
        if not mime_type.startswith("video/"):
            logger.warning("Unsupported upload mime type: %s", mime_type)
            raise UnsupportedMediaType(mime_type)

        # Path content is measured while streaming
        if isinstance(payload.content, (bytes, bytearray)):
            actual = len(payload.content)
            if actual != payload.size_bytes:
                logger.warning(
                    "Upload size mismatch: declared %d, got %d bytes",
                    payload.size_bytes,
                    actual,
                )
                raise PayloadSizeMismatch(payload.size_bytes, actual)

        if payload.size_bytes > self._max_upload_bytes:
            logger.warning(
                "Upload exceeds size limit: %d > %d bytes",
                payload.size_bytes,
                self._max_upload_bytes,
            )
            raise PayloadTooLarge(payload.size_bytes, self._max_upload_bytes)

        return LocalPayload(
            content=payload.content,
            name=payload.name,
            mime_type=mime_type,
            size_bytes=payload.size_bytes,
        )
