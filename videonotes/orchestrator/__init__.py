"""Orchestrator package - coordinates transcription runs."""
from .core import TranscriptionOrchestrator
from .process import ProcessState, TranscriptionProcess

__all__ = ["TranscriptionOrchestrator", "ProcessState", "TranscriptionProcess"]
