"""Application use cases for transcription workflows."""

from .prepare_source import PrepareSourceUseCase, is_http_locator
from .transcribe import TranscribeVideoUseCase, UploadAndActivateUseCase

__all__ = [
    "PrepareSourceUseCase",
    "is_http_locator",
    "TranscribeVideoUseCase",
    "UploadAndActivateUseCase",
]
