"""Tunelib - personal music library ingestion and storage."""

__version__ = "0.1.0"
