"""Lecture material ingestion, quiz generation and live quiz broadcast."""

__version__ = "0.1.0"
