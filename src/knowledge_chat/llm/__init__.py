"""Streaming transport and normalization layer for knowledge-chat."""

from knowledge_chat.llm.cancel import CancelToken, StreamCancelled
from knowledge_chat.llm.client import AsyncChatClient, ChatStream
from knowledge_chat.llm.errors import ChatError, ErrorClassifier, ErrorKind
from knowledge_chat.llm.framing import LineFramer, parse_line
from knowledge_chat.llm.payload import extract_text, is_finished
from knowledge_chat.llm.splitter import THINK_END, THINK_START, split

__all__ = [
    "AsyncChatClient",
    "CancelToken",
    "ChatError",
    "ChatStream",
    "ErrorClassifier",
    "ErrorKind",
    "LineFramer",
    "StreamCancelled",
    "THINK_END",
    "THINK_START",
    "extract_text",
    "is_finished",
    "parse_line",
    "split",
]
