"""Diagnostic event bus for knowledge-chat."""

from knowledge_chat.events.bus import EventBus

__all__ = ["EventBus"]
