"""
Stream multiplexer: provider deltas in, uniform StreamEvents out.

Thinking deltas are buffered and released at natural break points; answer
deltas pass straight through. The output always starts with one metadata
event and ends with either complete or error.
"""
import json
import time
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog

from paralegal_api.models.chat import ProviderDelta, StreamEvent
from paralegal_api.utils.metrics import first_token_latency, track_stream_event


class BufferState(str, Enum):
    IDLE = "idle"
    BUFFERING = "buffering"
    FLUSHED = "flushed"


class ThoughtBuffer:
    """
    Accumulates thinking text until a flush trigger fires: the buffer ends a
    sentence or a line, exceeds max_chars, or flush_interval seconds have
    passed since the last flush.
    """

    def __init__(
        self,
        max_chars: int = 100,
        flush_interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.max_chars = max_chars
        self.flush_interval = flush_interval
        self.clock = clock
        self.state = BufferState.IDLE
        self._buffer = ""
        self._last_flush = clock()

    @property
    def pending(self) -> str:
        return self._buffer

    def ends_sentence(self) -> bool:
        return self._buffer.endswith(".")

    def ends_line(self) -> bool:
        return self._buffer.endswith("\n")

    def over_size(self) -> bool:
        return len(self._buffer) > self.max_chars

    def interval_elapsed(self) -> bool:
        return self.clock() - self._last_flush > self.flush_interval

    def should_flush(self) -> bool:
        return (
            self.ends_sentence()
            or self.ends_line()
            or self.over_size()
            or self.interval_elapsed()
        )

    def append(self, text: str) -> Optional[str]:
        """Add text; return the flushed content when a trigger fired"""
        self._buffer += text
        self.state = BufferState.BUFFERING
        if self.should_flush():
            return self._flush()
        return None

    def drain(self) -> Optional[str]:
        """Flush whatever is left, if anything"""
        if self.state != BufferState.BUFFERING:
            return None
        return self._flush()

    def _flush(self) -> Optional[str]:
        content = self._buffer.strip()
        self._buffer = ""
        self._last_flush = self.clock()
        self.state = BufferState.FLUSHED
        return content or None


class StreamMultiplexer:
    """Re-serializes one model stream into the StreamEvent protocol"""

    def __init__(
        self,
        response_type: str,
        model: str,
        stream_thoughts: bool = False,
        sources: Optional[List[Dict[str, Any]]] = None,
        thought_buffer: Optional[ThoughtBuffer] = None,
        logger: Optional[structlog.stdlib.BoundLogger] = None
    ):
        self.response_type = response_type
        self.model = model
        self.stream_thoughts = stream_thoughts
        self.sources = sources
        self.thoughts = thought_buffer or ThoughtBuffer()
        self.logger = logger or structlog.get_logger(__name__)
        self.closed = False
        self._answer_parts: List[str] = []

    @property
    def answer_text(self) -> str:
        return "".join(self._answer_parts)

    def metadata_event(self) -> StreamEvent:
        return StreamEvent(
            type="metadata",
            response_type=self.response_type,
            model=self.model,
            sources=self.sources,
        )

    async def stream(self, deltas: AsyncIterator[ProviderDelta]) -> AsyncIterator[StreamEvent]:
        """
        Consume provider deltas and yield StreamEvents.

        Exceptions from the provider become a single terminal error event.
        The upstream iterator is closed on every exit path, including when
        the consumer stops reading.
        """
        started = time.monotonic()
        first_answer = True
        try:
            yield self._emit(self.metadata_event())

            async for delta in deltas:
                if delta.kind == "thinking":
                    if not self.stream_thoughts or not delta.payload:
                        continue
                    content = self.thoughts.append(delta.payload)
                    if content:
                        yield self._emit(StreamEvent(type="thought", content=content))

                elif delta.kind == "text":
                    if not delta.payload:
                        continue
                    if first_answer:
                        first_token_latency.observe(time.monotonic() - started)
                        first_answer = False
                    self._answer_parts.append(delta.payload)
                    yield self._emit(StreamEvent(type="answer", content=delta.payload))

                elif delta.kind == "start":
                    self.logger.debug("Model stream started", model=delta.payload or self.model)

                elif delta.kind == "stop":
                    self.logger.debug("Model stream stopped", response_type=self.response_type)
                    break

            leftover = self.thoughts.drain()
            if leftover:
                yield self._emit(StreamEvent(type="thought", content=leftover))

            yield self._emit(StreamEvent(type="complete"))

        except Exception as e:
            self.logger.error(
                "Stream processing error",
                response_type=self.response_type,
                error=str(e),
                exc_info=True
            )
            yield self._emit(StreamEvent(type="error", error=f"Error processing stream: {e}"))

        finally:
            self.closed = True
            aclose = getattr(deltas, "aclose", None)
            if aclose is not None:
                await aclose()

    def _emit(self, event: StreamEvent) -> StreamEvent:
        track_stream_event(event.type)
        return event


def create_sse_message(event: StreamEvent) -> str:
    """JSON body of one SSE event; EventSourceResponse adds the "data: " framing"""
    return json.dumps(event.to_payload())
