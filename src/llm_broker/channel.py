from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import cast

from .contracts import CompletionResponse

_CLOSED = object()


class _ChannelState:
    def __init__(self) -> None:
        self.queue: asyncio.Queue[object] = asyncio.Queue()
        self.sender_closed = False
        self.receiver_closed = False


class CompletionSender:
    """
    Best-effort publishing end of a completion channel.

    `send` never blocks. Items sent after the receiver has gone away are
    dropped and reported with a False return; callers are not expected to
    react to that.
    """

    def __init__(self, state: _ChannelState):
        self._state = state

    @property
    def closed(self) -> bool:
        return self._state.sender_closed or self._state.receiver_closed

    def send(self, response: CompletionResponse) -> bool:
        if self.closed:
            return False
        self._state.queue.put_nowait(response)
        return True

    def close(self) -> None:
        if self._state.sender_closed:
            return
        self._state.sender_closed = True
        self._state.queue.put_nowait(_CLOSED)


class CompletionReceiver:
    def __init__(self, state: _ChannelState):
        self._state = state

    def close(self) -> None:
        self._state.receiver_closed = True
        # Release buffered snapshots nobody will read.
        while not self._state.queue.empty():
            self._state.queue.get_nowait()

    async def recv(self) -> CompletionResponse | None:
        """Next response, or None once the sender closed and the buffer is drained."""
        if self._state.receiver_closed:
            return None
        item = await self._state.queue.get()
        if item is _CLOSED:
            # Keep the marker visible to later recv() calls.
            self._state.queue.put_nowait(_CLOSED)
            return None
        return cast(CompletionResponse, item)

    def __aiter__(self) -> AsyncIterator[CompletionResponse]:
        return self._iter()

    async def _iter(self) -> AsyncIterator[CompletionResponse]:
        while True:
            item = await self.recv()
            if item is None:
                return
            yield item


def completion_channel() -> tuple[CompletionSender, CompletionReceiver]:
    state = _ChannelState()
    return CompletionSender(state), CompletionReceiver(state)
