from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from enum import Enum

import structlog

from .channel import CompletionSender
from .contracts import CompletionResponse
from .errors import TransportError
from .metrics import stream_chunks_total, stream_failures_total
from .openai_compat import ChatCompletionChunk

log = structlog.get_logger()


class StreamState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


def first_choice_delta(chunk: ChatCompletionChunk) -> str:
    if not chunk.choices:
        return ""
    return chunk.choices[0].delta.content or ""


def strict_first_choice_delta(chunk: ChatCompletionChunk) -> str:
    if not chunk.choices:
        raise TransportError("Upstream chunk carried no choices.")
    return chunk.choices[0].delta.content or ""


class StreamAggregator:
    """
    Folds a chunk stream into a transcript, publishing a snapshot per chunk.

    Publishing is best-effort: a closed or abandoned receiver never stops
    consumption. A transport or decode error mid-stream ends the stream early
    and `run` returns whatever text arrived before it.
    """

    def __init__(
        self,
        *,
        model: str,
        sender: CompletionSender | None = None,
        variant: str = "unknown",
        extract_delta: Callable[[ChatCompletionChunk], str] = first_choice_delta,
    ):
        self.model = model
        self.state = StreamState.IDLE
        self.error: TransportError | None = None
        self._sender = sender
        self._variant = variant
        self._extract_delta = extract_delta
        self._transcript = ""

    @property
    def transcript(self) -> str:
        return self._transcript

    def _publish(self, delta: str) -> None:
        if self._sender is None:
            return
        self._sender.send(
            CompletionResponse(transcript_so_far=self.transcript, latest_delta=delta, model=self.model)
        )

    async def run(self, chunks: AsyncIterator[ChatCompletionChunk]) -> str:
        it = chunks.__aiter__()
        try:
            async for chunk in it:
                if self.state is StreamState.IDLE:
                    self.state = StreamState.STREAMING
                delta = self._extract_delta(chunk)
                self._transcript += delta
                stream_chunks_total.labels(variant=self._variant).inc()
                self._publish(delta)
        except TransportError as e:
            self.state = StreamState.FAILED
            self.error = e
            stream_failures_total.labels(variant=self._variant).inc()
            log.warning(
                "llm_stream_chunk_error",
                variant=self._variant,
                model=self.model,
                error=str(e),
                partial_chars=len(self._transcript),
            )
        else:
            self.state = StreamState.COMPLETED
            log.debug("llm_stream_completed", variant=self._variant, model=self.model, chars=len(self._transcript))
        finally:
            aclose = getattr(it, "aclose", None)
            if callable(aclose):
                await aclose()
            if self._sender is not None:
                self._sender.close()
        return self.transcript
