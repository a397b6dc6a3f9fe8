"""Split streamed text into reasoning and answer segments.

Models wrap intermediate reasoning in inline ``<think>...</think>`` tags.
The splitter is a pure function over an explicit ``SplitterState`` value:
the caller threads the returned state into the next call, so each stream
owns its own state and nothing is shared between streams.

Delimiters are expected to arrive whole within one increment; a tag that
is itself cut in half across two increments is not reassembled.
"""

from __future__ import annotations

from knowledge_chat.types import Segment, SegmentKind, SplitterState

THINK_START = "<think>"
THINK_END = "</think>"

_KIND_FOR_STATE = {
    SplitterState.ANSWERING: SegmentKind.ANSWER,
    SplitterState.REASONING: SegmentKind.REASONING,
}


def split(
    text: str,
    state: SplitterState = SplitterState.ANSWERING,
) -> tuple[list[Segment], SplitterState]:
    """Split one text increment.

    Returns the emitted segments (never empty-text) and the state to pass
    into the next call on the same stream.

    * While answering, ``<think>`` switches to reasoning; a stray
      ``</think>`` is kept as ordinary answer text.
    * While reasoning, ``</think>`` switches back to answering; a repeated
      ``<think>`` is dropped without toggling anything.
    """
    segments: list[Segment] = []
    rest = text

    while rest:
        if state is SplitterState.ANSWERING:
            idx = rest.find(THINK_START)
            if idx < 0:
                _emit(segments, state, rest)
                break
            _emit(segments, state, rest[:idx])
            rest = rest[idx + len(THINK_START):]
            state = SplitterState.REASONING
            continue

        end_idx = rest.find(THINK_END)
        start_idx = rest.find(THINK_START)
        if end_idx < 0 and start_idx < 0:
            _emit(segments, state, rest)
            break
        if start_idx >= 0 and (end_idx < 0 or start_idx < end_idx):
            # Already reasoning: a second opening tag is not a transition.
            _emit(segments, state, rest[:start_idx])
            rest = rest[start_idx + len(THINK_START):]
            continue
        _emit(segments, state, rest[:end_idx])
        rest = rest[end_idx + len(THINK_END):]
        state = SplitterState.ANSWERING

    return segments, state


def _emit(segments: list[Segment], state: SplitterState, text: str) -> None:
    if not text:
        return
    kind = _KIND_FOR_STATE[state]
    # Adjacent pieces of the same kind within one increment are merged.
    if segments and segments[-1].kind is kind:
        segments[-1] = Segment(kind, segments[-1].text + text)
    else:
        segments.append(Segment(kind, text))
