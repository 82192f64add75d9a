"""
Location: python/chatstream_sdk/dispatch.py

Summary:
    Delivers decoded stream events to caller-supplied callbacks.

Usage:
    Created by StreamSession.run() around the on_chunk / on_thinking
    callbacks. Content is always delivered before reasoning for the same
    frame; terminal markers go through on_chunk.
"""

from typing import Callable, Optional

from .frames import ABORTED_MARKER, DONE_SENTINEL
from .types import StreamEvent

ChunkCallback = Callable[[str], None]


class Dispatcher:
    """
    Routes StreamEvents to the content and reasoning callbacks.

    Attributes:
        on_chunk: Receives content deltas and the terminal markers
        on_thinking: Receives reasoning deltas; optional
        is_cancelled: Checked between the two channels of one frame so
            that nothing is delivered after a callback requests an abort
    """

    def __init__(
        self,
        on_chunk: ChunkCallback,
        on_thinking: Optional[ChunkCallback] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ):
        self.on_chunk = on_chunk
        self.on_thinking = on_thinking
        self.is_cancelled = is_cancelled or (lambda: False)

    def dispatch(self, event: StreamEvent) -> int:
        """
        Deliver one event's deltas.

        Empty strings are treated like absent deltas. Reasoning deltas are
        dropped when no on_thinking callback was supplied.

        Args:
            event: Decoded event for a single frame

        Returns:
            Number of callbacks fired (0, 1 or 2)
        """
        fired = 0
        if event.content_delta:
            self.on_chunk(event.content_delta)
            fired += 1
        if self.is_cancelled():
            return fired
        if event.reasoning_delta and self.on_thinking is not None:
            self.on_thinking(event.reasoning_delta)
            fired += 1
        return fired

    def complete(self) -> None:
        self.on_chunk(DONE_SENTINEL)

    def abort(self) -> None:
        self.on_chunk(ABORTED_MARKER)
