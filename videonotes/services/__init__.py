"""Services for videonotes: transport, polling, prompts and parsing."""
from .gemini_client import GeminiFilesClient
from .poller import BackoffPoller, backoff_delays
from .prompts import build_prompt
from .response_parser import ParsedResponse, parse_response

__all__ = [
    "GeminiFilesClient",
    "BackoffPoller",
    "backoff_delays",
    "build_prompt",
    "ParsedResponse",
    "parse_response",
]
