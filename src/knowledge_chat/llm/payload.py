"""Vendor payload extraction and completion detection.

This is the only place that knows vendor-specific field paths.  Backends
may be swapped without notice, so both functions are tolerant: unknown or
oddly-typed payloads degrade to "no text" / "not finished" rather than
raising.
"""

from __future__ import annotations

from typing import Any, Callable

# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


def _dig(obj: Any, *path: str | int) -> Any:
    """Follow *path* through nested dicts/lists, returning ``None`` on any miss."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(obj, list) or len(obj) <= key:
                return None
            obj = obj[key]
        else:
            if not isinstance(obj, dict):
                return None
            obj = obj.get(key)
    return obj


def _text_at(obj: Any, *path: str | int) -> str:
    value = _dig(obj, *path)
    return value if isinstance(value, str) else ""


def _first_text(obj: Any, *paths: tuple[str | int, ...]) -> str:
    for path in paths:
        text = _text_at(obj, *path)
        if text:
            return text
    return ""


# ---------------------------------------------------------------------------
# Matchers, highest priority first
# ---------------------------------------------------------------------------

def match_result_output(payload: Any) -> str:
    """Backend's own shape: ``result.output.content``."""
    return _text_at(payload, "result", "output", "content")


def match_results_list(payload: Any) -> str:
    """``results[0].output.content``."""
    return _text_at(payload, "results", 0, "output", "content")


def match_openai_choices(payload: Any) -> str:
    """OpenAI: ``choices[0].delta.content`` then ``choices[0].message.content``."""
    return _first_text(
        payload,
        ("choices", 0, "delta", "content"),
        ("choices", 0, "message", "content"),
    )


def match_anthropic_delta(payload: Any) -> str:
    """Anthropic ``content_block_delta``: ``delta.text``."""
    return _text_at(payload, "delta", "text")


def match_anthropic_block(payload: Any) -> str:
    """Anthropic ``content_block_start``: ``content_block.text``."""
    return _text_at(payload, "content_block", "text")


def match_top_level(payload: Any) -> str:
    """Generic flat shapes: ``content``, ``text`` or ``message`` as strings."""
    return _first_text(payload, ("content",), ("text",), ("message",))


def match_nested_data(payload: Any) -> str:
    """``data.content`` then ``data.text``."""
    return _first_text(payload, ("data", "content"), ("data", "text"))


Matcher = Callable[[Any], str]

PAYLOAD_MATCHERS: tuple[Matcher, ...] = (
    match_result_output,
    match_results_list,
    match_openai_choices,
    match_anthropic_delta,
    match_anthropic_block,
    match_top_level,
    match_nested_data,
)


def extract_text(payload: Any) -> str:
    """Return the text increment carried by *payload*, or ``""``."""
    for matcher in PAYLOAD_MATCHERS:
        text = matcher(payload)
        if text:
            return text
    return ""


# ---------------------------------------------------------------------------
# Completion detection
# ---------------------------------------------------------------------------

_STOP_TYPES = frozenset({"message_stop", "content_block_stop"})


def _present(value: Any) -> bool:
    # Intermediate OpenAI chunks carry ``"finish_reason": null``.
    return value is not None and value != ""


def is_finished(payload: Any) -> bool:
    """True if *payload* carries any known end-of-stream signal."""
    if not isinstance(payload, dict):
        return False
    if _present(_dig(payload, "result", "metadata", "finishReason")):
        return True
    if _present(_dig(payload, "results", 0, "metadata", "finishReason")):
        return True
    if _present(_dig(payload, "choices", 0, "finish_reason")):
        return True
    if payload.get("done") is True:
        return True
    kind = payload.get("type")
    return isinstance(kind, str) and kind in _STOP_TYPES
