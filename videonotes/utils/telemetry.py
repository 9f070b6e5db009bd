"""Lightweight telemetry: structured log lines for events and timed spans."""
from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Any, AsyncIterator, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TelemetryContext:
    request_id: Optional[str] = None
    route: Optional[str] = None


def create_request_id() -> str:
    return str(uuid.uuid4())


def is_telemetry_enabled() -> bool:
    return os.getenv("TELEMETRY_ENABLED", "").strip().lower() != "false"


def serialize_error(error: BaseException) -> Dict[str, Any]:
    return {"name": type(error).__name__, "message": str(error)}


def track_event(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    context: Optional[TelemetryContext] = None,
    log: Optional[logging.Logger] = None,
) -> None:
    """Log a single telemetry event unless TELEMETRY_ENABLED=false."""
    if not is_telemetry_enabled():
        return
    payload: Dict[str, Any] = {"name": name}
    payload.update(data or {})
    if context is not None:
        payload.update({k: v for k, v in asdict(context).items() if v is not None})
    (log or logger).info("telemetry_event %s", payload, extra={"telemetry": payload})


@asynccontextmanager
async def track_span(
    name: str,
    data: Optional[Dict[str, Any]] = None,
    context: Optional[TelemetryContext] = None,
    log: Optional[logging.Logger] = None,
) -> AsyncIterator[None]:
    """Time the wrapped block and report its outcome as one event."""
    start = time.perf_counter()
    outcome = "success"
    error: Optional[BaseException] = None
    try:
        yield
    except asyncio.CancelledError:
        outcome = "cancelled"
        raise
    except Exception as exc:
        outcome = "error"
        error = exc
        raise
    finally:
        span_data = dict(data or {})
        span_data["durationMs"] = round((time.perf_counter() - start) * 1000)
        span_data["outcome"] = outcome
        if error is not None:
            span_data["error"] = serialize_error(error)
        track_event(name, span_data, context, log)
