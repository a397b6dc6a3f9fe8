"""Async streaming chat client.

``AsyncChatClient.stream_chat()`` returns a :class:`ChatStream`: a lazy,
single-use async iterator of :class:`~knowledge_chat.types.Segment`.
Iterating it drives one request end-to-end::

    transport bytes -> LineFramer -> json -> extract_text -> split -> Segment
                                          \\-> is_finished -> stop

Every transport read is raced against the caller's ``CancelToken``.  The
stream ends in exactly one of three successful ways (see ``StreamOutcome``)
or raises a classified :class:`~knowledge_chat.llm.errors.ChatError`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx
import pydantic

from knowledge_chat.config import ServerConfig
from knowledge_chat.events.bus import EventBus
from knowledge_chat.types import (
    ChatRequest,
    EventType,
    Segment,
    SplitterState,
    StreamEvent,
    StreamOutcome,
)

from .cancel import CancelToken
from .errors import (
    MSG_CANCELLED,
    ApiEnvelopeError,
    ChatError,
    ErrorClassifier,
    ErrorKind,
)
from .framing import LineFramer
from .payload import extract_text, is_finished
from .splitter import split

_logger = logging.getLogger(__name__)

# Application codes the backend uses for success inside its envelope
SUCCESS_CODES = frozenset({"2000", "20000"})

MODELS_PATH = "/ollama/models"
RAG_TAGS_PATH = "/rag/query_rag_tag_list"


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


async def _discard_response(response: httpx.Response) -> None:
    await response.aclose()


class ChatStream:
    """One in-flight chat response.

    Owns its framer buffer, splitter state and cancel token; nothing is
    shared with other streams.  After iteration finishes normally,
    ``outcome`` tells how the stream ended.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        request: ChatRequest,
        url: str,
        cancel: CancelToken | None = None,
        event_bus: EventBus | None = None,
        timeout: httpx.Timeout | None = None,
        classifier: ErrorClassifier | None = None,
    ) -> None:
        self.request = request
        self.cancel = cancel or CancelToken()
        self.outcome: StreamOutcome | None = None
        self.state = SplitterState.ANSWERING
        self.error: ChatError | None = None
        self._http = http
        self._url = url
        self._event_bus = event_bus
        self._timeout = timeout
        self._classifier = classifier or ErrorClassifier()
        self._started = False
        self._segment_count = 0

    def __aiter__(self) -> AsyncIterator[Segment]:
        if self._started:
            raise RuntimeError("ChatStream can only be iterated once")
        self._started = True
        return self._run()

    async def collect(self) -> tuple[str, str]:
        """Drain the stream.  Returns ``(reasoning, answer)``."""
        reasoning: list[str] = []
        answer: list[str] = []
        async for segment in self:
            (reasoning if segment.is_reasoning else answer).append(segment.text)
        return "".join(reasoning), "".join(answer)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self) -> AsyncIterator[Segment]:
        await self._emit(EventType.STREAM_STARTED, {
            "model": self.request.model,
            "endpoint": self._url,
            "rag_tag": self.request.rag_tag,
        })

        try:
            response = await self.cancel.race(
                self._open(), on_discard=_discard_response,
            )
        except Exception as exc:
            self.cancel.release()
            raise await self._fail(exc) from exc

        try:
            response.raise_for_status()
            async for segment in self._segments(response):
                self._segment_count += 1
                yield segment
        except Exception as exc:
            error = await self._fail(exc)
            if error is exc:
                raise
            raise error from exc
        finally:
            self.cancel.release()
            await response.aclose()

        _logger.debug(
            "Stream finished (%s) after %d segments",
            self.outcome.value if self.outcome else "?", self._segment_count,
        )
        await self._emit(EventType.STREAM_DONE, {
            "outcome": self.outcome.value if self.outcome else None,
            "segments": self._segment_count,
        })

    async def _open(self) -> httpx.Response:
        request = self._http.build_request(
            "POST",
            self._url,
            json=self.request.to_body(),
            headers={"Accept": "text/event-stream"},
            timeout=self._timeout,
        )
        _logger.info(
            "Opening stream: model=%s rag_tag=%s message_len=%d",
            self.request.model, self.request.rag_tag, len(self.request.message),
        )
        return await self._http.send(request, stream=True)

    async def _segments(self, response: httpx.Response) -> AsyncIterator[Segment]:
        framer = LineFramer()
        chunks = response.aiter_bytes()

        while True:
            chunk = await self.cancel.race(_next_chunk(chunks))
            lines = framer.feed(chunk) if chunk is not None else framer.flush()

            for line in lines:
                self._raise_if_cancelled()
                if not line.is_event_data:
                    continue
                if line.is_terminal:
                    self.outcome = StreamOutcome.SENTINEL
                    return

                try:
                    payload = json.loads(line.payload)
                except (ValueError, RecursionError) as e:
                    # JSONDecodeError, oversized integers, absurd nesting
                    _logger.warning(
                        "Skipping malformed stream line: %s... (%s)",
                        line.payload[:100], e,
                    )
                    await self._emit(EventType.STREAM_LINE_DROPPED, {
                        "reason": "malformed_json",
                        "payload": line.payload[:200],
                    })
                    continue

                text = extract_text(payload)
                finished = is_finished(payload)

                if text:
                    segments, self.state = split(text, self.state)
                    for segment in segments:
                        self._raise_if_cancelled()
                        yield segment
                elif not finished:
                    _logger.debug("No text in payload: %s", line.payload[:100])
                    await self._emit(EventType.STREAM_LINE_DROPPED, {
                        "reason": "unrecognized_shape",
                        "payload": line.payload[:200],
                    })

                if finished:
                    self.outcome = StreamOutcome.COMPLETION_SIGNAL
                    return

            if chunk is None:
                self.outcome = StreamOutcome.EXHAUSTED
                return

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _raise_if_cancelled(self) -> None:
        if self.cancel.cancelled:
            raise ChatError(ErrorKind.CANCELLED, MSG_CANCELLED)

    async def _fail(self, exc: Exception) -> ChatError:
        error = self._classifier.classify(exc, self.cancel)
        self.error = error
        if error.cancelled:
            _logger.info("Stream cancelled: %s", self.cancel.reason or error.message)
            await self._emit(EventType.STREAM_CANCELLED, {
                "segments": self._segment_count,
            })
        else:
            _logger.warning("Stream failed (%s): %s", error.kind.value, error.message)
            await self._emit(EventType.STREAM_ERROR, {
                "kind": error.kind.value,
                "message": error.message,
                "status_code": error.status_code,
            })
        return error

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(StreamEvent(type=event_type, data=data))


class AsyncChatClient:
    """Async client for the knowledge-chat backend.

    Parameters
    ----------
    config:
        Server settings (base URL, API prefix, timeouts).
    event_bus:
        Optional bus receiving diagnostic ``StreamEvent``s from every stream.
    transport:
        Optional ``httpx`` transport, mainly for tests.
    """

    def __init__(
        self,
        config: ServerConfig | None = None,
        event_bus: EventBus | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or ServerConfig()
        self.event_bus = event_bus
        self._classifier = ErrorClassifier()

        headers = {"Content-Type": "application/json", **self.config.headers}
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=headers,
            timeout=httpx.Timeout(
                self.config.request_timeout, connect=self.config.connect_timeout,
            ),
            transport=transport,
        )
        self._stream_timeout = httpx.Timeout(
            self.config.request_timeout,
            connect=self.config.connect_timeout,
            read=self.config.stream_read_timeout,
        )

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    def stream_chat(
        self,
        model: str,
        message: str,
        rag_tag: str | None = None,
        *,
        cancel: CancelToken | None = None,
    ) -> ChatStream:
        """Validate the input and return a lazy stream for it.

        Raises ``ChatError`` of kind ``VALIDATION`` before any request is
        issued if the input is unacceptable.  Picks the knowledge-base
        endpoint when *rag_tag* is given.
        """
        try:
            request = ChatRequest(model=model, message=message, rag_tag=rag_tag)
        except pydantic.ValidationError as exc:
            raise self._classifier.classify(exc) from exc
        return self.open_stream(request, cancel=cancel)

    def open_stream(
        self,
        request: ChatRequest,
        cancel: CancelToken | None = None,
    ) -> ChatStream:
        return ChatStream(
            self._client,
            request,
            self.config.url_for(request.endpoint),
            cancel=cancel,
            event_bus=self.event_bus,
            timeout=self._stream_timeout,
            classifier=self._classifier,
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def list_models(self) -> list[str]:
        """Models the backend can chat with."""
        data = await self._get_envelope(MODELS_PATH)
        return [str(item) for item in data] if isinstance(data, list) else []

    async def list_rag_tags(self) -> list[str]:
        """Knowledge-base tags; an unreachable backend yields an empty list."""
        try:
            data = await self._get_envelope(RAG_TAGS_PATH)
        except ChatError as e:
            _logger.debug("RAG tag lookup failed, using empty list: %s", e.message)
            return []
        return [str(item) for item in data] if isinstance(data, list) else []

    async def _get_envelope(self, path: str) -> Any:
        try:
            resp = await self._client.get(self.config.url_for(path))
            resp.raise_for_status()
            body = resp.json()
            if not isinstance(body, dict):
                raise ApiEnvelopeError(None, "Malformed response envelope")
            code = body.get("code")
            if str(code) not in SUCCESS_CODES:
                raise ApiEnvelopeError(code, str(body.get("info") or ""))
            return body.get("data")
        except Exception as exc:
            raise self._classifier.classify(exc) from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncChatClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
