"""Incremental framing of a server-sent event byte stream.

Transport reads carry no alignment guarantee: one read may hold zero, one or
many lines and may end in the middle of a line or of a UTF-8 sequence.  The
framer keeps the unfinished tail between reads and only classifies complete
lines.
"""

from __future__ import annotations

import codecs
import logging

from knowledge_chat.types import LineClassification

_logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINELS = ("[DONE]", "DONE")

_NOT_DATA = LineClassification(is_event_data=False)
_TERMINAL = LineClassification(is_event_data=True, is_terminal=True)


def parse_line(line: str) -> LineClassification:
    """Classify a single event-stream line.

    ``data: {...}`` is event data, ``data: [DONE]`` is terminal, everything
    else (blank lines, ``event:``, ``id:``, ``retry:``, comments, noise) is
    not data.
    """
    trimmed = line.strip()
    if not trimmed.startswith(DATA_PREFIX):
        return _NOT_DATA

    payload = trimmed[len(DATA_PREFIX):].strip()
    if payload in DONE_SENTINELS:
        return _TERMINAL
    return LineClassification(is_event_data=True, payload=payload)


class LineFramer:
    """Split arbitrary byte fragments into classified event-stream lines."""

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.lines_seen = 0

    def feed(self, chunk: bytes | str) -> list[LineClassification]:
        """Append *chunk* and return classifications of all completed lines."""
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        if "\n" not in self._buffer:
            return []

        *complete, self._buffer = self._buffer.split("\n")
        self.lines_seen += len(complete)
        return [parse_line(line) for line in complete]

    def flush(self) -> list[LineClassification]:
        """Classify whatever is left once the transport is exhausted."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if not tail.strip():
            return []
        self.lines_seen += 1
        _logger.debug("Flushing unterminated final line (%d chars)", len(tail))
        return [parse_line(tail)]

    @property
    def pending(self) -> str:
        """Text received but not yet terminated by a newline."""
        return self._buffer
