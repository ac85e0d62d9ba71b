"""Transcription ingestion and assembly engine."""

__version__ = "0.1.0"
