"""Chat generation pipeline."""

from .orchestrator import ChatOrchestrator

__all__ = ["ChatOrchestrator"]
