"""Streaming chat generation backend."""

__version__ = "0.1.0"
