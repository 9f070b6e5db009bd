"""Shared helpers: stream records, progress side channel and telemetry."""
