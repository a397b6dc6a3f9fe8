"""knowledge-chat: streaming chat client for knowledge-base grounded LLM backends."""

__version__ = "0.3.0"
