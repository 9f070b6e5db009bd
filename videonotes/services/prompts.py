"""Prompt construction for each kind of source."""
from ..models import LocalPayload, RemoteSource, Source

RESPONSE_FORMAT = '{"transcript":"...","notes":["...","..."]}'


def build_prompt(source: Source) -> str:
    if isinstance(source, RemoteSource):
        return "\n".join(
            [
                "You are a transcription assistant. If you cannot access the video contents for the URL",
                "below, respond with a single JSON object that includes an empty transcript and notes plus",
                "a brief message explaining that the URL cannot be accessed.",
                f"Video URL: {source.locator}",
                "",
                "Respond with JSON in this format:",
                RESPONSE_FORMAT,
            ]
        )
    if isinstance(source, LocalPayload):
        return "\n".join(
            [
                "Transcribe the attached video and summarize it into bullet notes.",
                "Respond with JSON in this format:",
                RESPONSE_FORMAT,
            ]
        )
    raise TypeError(f"Unsupported source type: {type(source).__name__}")
