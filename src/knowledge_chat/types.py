"""Shared data types for knowledge-chat."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Stream types
# ---------------------------------------------------------------------------

class SegmentKind(enum.Enum):
    """Which part of the model output a segment belongs to."""

    ANSWER = "answer"
    REASONING = "reasoning"


@dataclass(frozen=True)
class Segment:
    """One typed piece of model output produced by the tag splitter."""

    kind: SegmentKind
    text: str

    @property
    def is_reasoning(self) -> bool:
        return self.kind is SegmentKind.REASONING


class SplitterState(enum.Enum):
    """Whether the stream is currently inside a ``<think>`` block."""

    ANSWERING = "answering"
    REASONING = "reasoning"


@dataclass(frozen=True)
class LineClassification:
    """Result of classifying one event-stream line."""

    is_event_data: bool
    payload: str = ""
    is_terminal: bool = False


class StreamOutcome(enum.Enum):
    """How a successful stream came to an end."""

    EXHAUSTED = "exhausted"  # transport ran out of bytes
    SENTINEL = "sentinel"  # ``data: [DONE]``
    COMPLETION_SIGNAL = "completion_signal"  # finish marker inside a payload


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

STREAM_ENDPOINT = "/ollama/generate_stream"
RAG_STREAM_ENDPOINT = "/ollama/generate_stream_rag"


class ChatRequest(BaseModel):
    """A single user-initiated chat send.

    Limits mirror the backend's own request validation so bad input is
    rejected locally, before any request is issued.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    model: str = Field(min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=4000)
    rag_tag: str | None = Field(default=None, alias="ragTag", min_length=1, max_length=32)

    @field_validator("model", "message", "rag_tag")
    @classmethod
    def _not_blank(cls, value: str | None) -> str | None:
        if value is not None and not value.strip():
            raise ValueError("must not be blank")
        return value

    @property
    def endpoint(self) -> str:
        """Path (relative to the API prefix) this request is posted to."""
        return RAG_STREAM_ENDPOINT if self.rag_tag else STREAM_ENDPOINT

    def to_body(self) -> dict[str, Any]:
        """JSON body in the backend's field naming."""
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Diagnostic events emitted while a stream runs."""

    STREAM_STARTED = "stream.started"
    STREAM_LINE_DROPPED = "stream.line_dropped"
    STREAM_DONE = "stream.done"
    STREAM_CANCELLED = "stream.cancelled"
    STREAM_ERROR = "stream.error"


@dataclass
class StreamEvent:
    """Event emitted by a chat stream via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
