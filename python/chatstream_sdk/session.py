"""
Location: python/chatstream_sdk/session.py

Summary:
    Stream session lifecycle and the decode loop. A StreamSession owns one
    request's pipeline (accumulator -> frame filter -> sentinel check ->
    event decoder -> dispatcher) and guarantees exactly one outcome:
    completed, aborted or failed. SessionRegistry keeps at most one live
    session per logical consumer.

Usage:
    Used by client.py. The caller gets the StreamSession handle when a
    request starts and may call abort() on it at any time; cancellation
    is observed at the next suspension point of the decode loop.

Example:
    from chatstream_sdk.session import SessionRegistry

    registry = SessionRegistry()
    session = registry.begin("chat-panel")

    state = await session.run(response.aiter_bytes(), on_chunk, on_thinking)
    # elsewhere: registry.abort("chat-panel") or session.abort()
"""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterable, AsyncIterator, Optional

from .accumulator import LineAccumulator
from .dispatch import ChunkCallback, Dispatcher
from .exceptions import ChatStreamError
from .frames import DecodeError, decode_event, extract_payload, is_sentinel
from .types import StreamStats

logger = logging.getLogger(__name__)

# Markers returned by StreamSession._next_chunk instead of a chunk.
_END = object()
_ABORTED = object()


class SessionState(str, Enum):
    """Lifecycle states of a StreamSession."""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


TERMINAL_STATES = frozenset({
    SessionState.COMPLETED,
    SessionState.ABORTED,
    SessionState.FAILED,
})


class SessionError(ChatStreamError):
    """Exception raised when a session is used outside its lifecycle."""
    pass


class UnexpectedReadError(ChatStreamError):
    """Exception raised when the chunk source fails mid-stream."""
    pass


class StreamSession:
    """
    One logical streaming request.

    The session is exclusively owned by its decode loop. The only field
    meant to be changed from outside is the cancellation flag, via abort().
    Once a terminal state is reached the session is inert and cannot be
    run again.

    Attributes:
        consumer: Logical consumer this session belongs to
        state: Current SessionState
        cancelled: True once abort() has been requested
        terminal_emitted: True once the [DONE] marker has been delivered
        stats: Byte, frame and event counters
        decode_errors: Frames that failed to decode, in stream order
    """

    def __init__(self, consumer: str = "default"):
        self.consumer = consumer
        self.state = SessionState.IDLE
        self.cancelled = False
        self.terminal_emitted = False
        self.stats = StreamStats()
        self.decode_errors: list[DecodeError] = []
        self._accumulator = LineAccumulator()
        self._abort_event = asyncio.Event()

    def __repr__(self) -> str:
        return f"StreamSession(consumer={self.consumer!r}, state={self.state.value})"

    @property
    def active(self) -> bool:
        return self.state is SessionState.STREAMING

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def buffer(self) -> str:
        """Pending partial line held between chunks."""
        return self._accumulator.buffer

    def abort(self) -> bool:
        """
        Request cancellation of this session.

        Idempotent: only the first call on an unfinished session has any
        effect. A pending chunk read is interrupted; the decode loop then
        delivers the [ABORTED] marker and stops.

        Returns:
            True if this call set the cancellation flag
        """
        if self.cancelled or self.finished:
            return False
        self.cancelled = True
        self._abort_event.set()
        logger.debug("abort requested for %r", self)
        return True

    def fail(self, error: BaseException) -> None:
        """
        Mark a session that never started streaming as failed.

        Args:
            error: The fatal error, used for logging only

        Raises:
            SessionError: If the session already left the idle state
        """
        if self.state is not SessionState.IDLE:
            raise SessionError(f"cannot fail a session in state {self.state.value!r}")
        self.state = SessionState.FAILED
        logger.error("stream session for %r failed before streaming: %s", self.consumer, error)

    async def wait_aborted(self) -> None:
        """Wait until abort() has been requested."""
        await self._abort_event.wait()

    def finish_aborted(self, on_chunk: ChunkCallback) -> SessionState:
        """
        End an aborted session that never started streaming.

        Delivers the [ABORTED] marker to on_chunk. Used when the abort
        lands before there is a response body to run over.

        Args:
            on_chunk: Receives the terminal marker

        Returns:
            SessionState.ABORTED

        Raises:
            SessionError: If the session is not idle or was never aborted
        """
        if self.state is not SessionState.IDLE:
            raise SessionError(f"cannot finish a session in state {self.state.value!r}")
        if not self.cancelled:
            raise SessionError("session was not aborted")
        return self._finish_aborted(Dispatcher(on_chunk))

    async def run(
        self,
        chunks: AsyncIterable[bytes],
        on_chunk: ChunkCallback,
        on_thinking: Optional[ChunkCallback] = None,
    ) -> SessionState:
        """
        Decode a chunk source and dispatch its events.

        Frames are dispatched strictly in stream order. A [DONE] frame
        completes the session without reading further; a source that ends
        without one still completes it with a synthesized [DONE]. Aborting
        delivers [ABORTED] instead and no further deltas.

        Args:
            chunks: Async iterable of raw byte buffers
            on_chunk: Receives content deltas and the terminal marker
            on_thinking: Receives reasoning deltas; optional

        Returns:
            SessionState.COMPLETED or SessionState.ABORTED

        Raises:
            SessionError: If the session was already run or failed
            UnexpectedReadError: If the chunk source raises mid-stream
        """
        if self.state is not SessionState.IDLE:
            raise SessionError(f"session already {self.state.value}; sessions cannot be reused")

        dispatcher = Dispatcher(on_chunk, on_thinking, is_cancelled=lambda: self.cancelled)
        self.state = SessionState.STREAMING
        iterator = chunks.__aiter__()
        try:
            while True:
                if self.cancelled:
                    return self._finish_aborted(dispatcher)

                chunk = await self._next_chunk(iterator)
                if chunk is _ABORTED or self.cancelled:
                    return self._finish_aborted(dispatcher)
                if chunk is _END:
                    break

                if self._process(self._accumulator.feed(chunk), dispatcher):
                    return self.state

            if self._process(self._accumulator.flush(), dispatcher):
                return self.state

            logger.debug(
                "stream closed without [DONE], synthesizing completion (bytes=%d, frames=%d, events=%d)",
                self.stats.total_bytes,
                self.stats.data_line_count,
                self.stats.event_count,
            )
            return self._finish_completed(dispatcher)
        except asyncio.CancelledError:
            if not self.finished:
                self.cancelled = True
                self._finish_aborted(dispatcher)
            raise
        except Exception:
            if self.state is SessionState.STREAMING:
                self.state = SessionState.FAILED
            raise
        finally:
            await self._close_source(iterator)

    def _process(self, lines: list[str], dispatcher: Dispatcher) -> bool:
        """
        Run complete lines through filter, sentinel check and decoder.

        Returns:
            True when the session reached a terminal state
        """
        self.stats.total_bytes = self._accumulator.total_bytes
        for line in lines:
            if self.cancelled:
                self._finish_aborted(dispatcher)
                return True

            payload = extract_payload(line)
            if payload is None:
                continue
            self.stats.data_line_count += 1

            if is_sentinel(payload):
                self._finish_completed(dispatcher)
                return True

            result = decode_event(payload)
            if not result.ok:
                self.decode_errors.append(result.error)
                logger.warning("skipping undecodable frame: %s", result.error)
                continue
            self.stats.event_count += dispatcher.dispatch(result.event)

        if self.cancelled:
            self._finish_aborted(dispatcher)
            return True
        return False

    async def _next_chunk(self, iterator: AsyncIterator[bytes]):
        """Await the next chunk, racing it against an abort request."""
        read = asyncio.ensure_future(_read(iterator))
        waiter = asyncio.ensure_future(self.wait_aborted())
        try:
            await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not read.done():
                read.cancel()
                await asyncio.wait({read})
        if read.cancelled():
            return _ABORTED
        try:
            return read.result()
        except Exception as e:
            if self.cancelled:
                return _ABORTED
            logger.error("chunk source failed after %d bytes: %s", self._accumulator.total_bytes, e)
            raise UnexpectedReadError(f"chunk source failed mid-stream: {e}") from e

    async def _close_source(self, iterator: AsyncIterator[bytes]) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception:
            logger.debug("error closing chunk source", exc_info=True)

    def _finish_completed(self, dispatcher: Dispatcher) -> SessionState:
        self.state = SessionState.COMPLETED
        self.terminal_emitted = True
        dispatcher.complete()
        return self.state

    def _finish_aborted(self, dispatcher: Dispatcher) -> SessionState:
        self.state = SessionState.ABORTED
        logger.warning("stream for %r aborted", self.consumer)
        dispatcher.abort()
        return self.state


async def _read(iterator: AsyncIterator[bytes]):
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class SessionRegistry:
    """
    Tracks the live session of each logical consumer.

    Starting a new session for a consumer aborts the one still live for
    it (last writer wins). Consumers never affect each other.
    """

    def __init__(self):
        self._sessions: dict[str, StreamSession] = {}

    def begin(self, consumer: str = "default") -> StreamSession:
        """
        Create and register a fresh session for a consumer.

        Args:
            consumer: Logical consumer key

        Returns:
            The new idle StreamSession
        """
        prior = self._sessions.get(consumer)
        if prior is not None and not prior.finished:
            logger.info("replacing live session for %r", consumer)
            prior.abort()
        session = StreamSession(consumer)
        self._sessions[consumer] = session
        return session

    def active(self, consumer: str = "default") -> Optional[StreamSession]:
        """Return the consumer's unfinished session, if any."""
        session = self._sessions.get(consumer)
        if session is None or session.finished:
            return None
        return session

    def abort(self, consumer: str = "default") -> bool:
        """
        Abort the consumer's unfinished session.

        Returns:
            False when there was nothing to abort
        """
        session = self.active(consumer)
        if session is None:
            return False
        return session.abort()

    def release(self, session: StreamSession) -> None:
        """Forget a session if it is still the one registered for its consumer."""
        if self._sessions.get(session.consumer) is session:
            del self._sessions[session.consumer]
