"""Hatchery conversational analytics package."""

from .config import ChatConfig, RetrievalConfig, Settings

__all__ = ["ChatConfig", "RetrievalConfig", "Settings"]
