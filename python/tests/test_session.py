"""
Tests for chatstream_sdk.session module.

Tests the decode loop end to end over in-memory chunk sources:
chunk-boundary invariance, exactly-once termination, decode-error
resilience, cancellation precedence and the SessionRegistry
last-writer-wins policy.
"""

import asyncio

import pytest

from chatstream_sdk.frames import DecodeError
from chatstream_sdk.session import (
    SessionError,
    SessionRegistry,
    SessionState,
    StreamSession,
    UnexpectedReadError,
)

from conftest import BlockingSource, Recorder, chunk_source, frame, split_every


async def decode(chunks, with_thinking=True):
    """Run a fresh session over the chunks and return (recorder, session)."""
    recorder = Recorder()
    session = StreamSession()
    await session.run(
        chunk_source(chunks),
        recorder.on_chunk,
        recorder.on_thinking if with_thinking else None,
    )
    return recorder, session


async def wait_for(predicate):
    """Yield to the event loop until predicate() holds."""
    for _ in range(1000):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


class TestScenarios:
    """Concrete input/output scenarios for the decode loop."""

    async def test_content_then_done(self):
        """Test a single content frame followed by [DONE]."""
        data = b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n'
        recorder, session = await decode([data])

        assert recorder.calls == [("chunk", "Hi"), ("chunk", "[DONE]")]
        assert session.state is SessionState.COMPLETED
        assert session.terminal_emitted is True

    async def test_frame_split_mid_json(self):
        """Test a frame cut inside its JSON still dispatches exactly once."""
        recorder, _ = await decode([
            b'data: {"choices":[{"delta"',
            b':{"content":"A"}}]}\n\n',
        ])
        assert recorder.calls == [("chunk", "A"), ("chunk", "[DONE]")]

    async def test_reasoning_only_frame(self):
        """Test a frame with only reasoning content fires only on_thinking."""
        recorder, _ = await decode([
            b'data: {"choices":[{"delta":{"reasoning_content":"think"}}]}\n\n',
        ])
        assert recorder.thinking == ["think"]
        assert recorder.chunks == ["[DONE]"]

    async def test_missing_done_is_synthesized(self):
        """Test a stream closing without [DONE] still completes exactly once."""
        data = (frame(content="a") + frame(content="b")).encode()
        recorder, session = await decode([data])

        assert recorder.chunks == ["a", "b", "[DONE]"]
        assert recorder.chunks.count("[DONE]") == 1
        assert session.state is SessionState.COMPLETED

    async def test_empty_stream_completes(self):
        """Test a source with no chunks at all still completes."""
        recorder, session = await decode([])
        assert recorder.calls == [("chunk", "[DONE]")]
        assert session.state is SessionState.COMPLETED

    async def test_unterminated_final_frame_is_processed(self):
        """Test a last frame without a trailing newline is still decoded."""
        recorder, _ = await decode([frame(content="tail").rstrip("\n").encode()])
        assert recorder.chunks == ["tail", "[DONE]"]

    async def test_unterminated_done(self):
        """Test [DONE] without a trailing newline is not doubled."""
        recorder, _ = await decode([frame(content="x").encode(), b"data: [DONE]"])
        assert recorder.chunks == ["x", "[DONE]"]

    async def test_full_transcript(self, sample_stream):
        """Test a realistic reasoning-model transcript."""
        recorder, session = await decode([sample_stream])

        assert recorder.calls == [
            ("thinking", "Let me think"),
            ("thinking", " about it."),
            ("chunk", "Hello"),
            ("chunk", ", 世界"),
            ("chunk", "!"),
            ("thinking", "done"),
            ("chunk", "[DONE]"),
        ]
        assert session.stats.data_line_count == 7
        assert session.stats.event_count == 6
        assert session.stats.total_bytes == len(sample_stream)


class TestChunkBoundaries:
    """Chunk-boundary and line-ending invariance."""

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 7, 13, 64])
    async def test_any_split_gives_same_calls(self, sample_stream, size):
        """Test every fixed-size split matches the single-chunk decode."""
        expected, _ = await decode([sample_stream])
        actual, _ = await decode(split_every(sample_stream, size))
        assert actual.calls == expected.calls

    async def test_empty_chunks_are_harmless(self, sample_stream):
        """Test zero-length chunks interleaved with data change nothing."""
        expected, _ = await decode([sample_stream])
        chunks = []
        for piece in split_every(sample_stream, 10):
            chunks.extend([b"", piece, b""])
        actual, _ = await decode(chunks)
        assert actual.calls == expected.calls

    async def test_crlf_matches_lf(self, sample_stream):
        """Test CRLF-terminated input decodes like LF-terminated input."""
        lf, _ = await decode([sample_stream])
        crlf, _ = await decode(split_every(sample_stream.replace(b"\n", b"\r\n"), 4))
        assert crlf.calls == lf.calls

    async def test_non_frame_lines_are_ignored(self):
        """Test comments, other SSE fields and blank lines are skipped."""
        data = (
            ": keep-alive\n"
            "event: message\n"
            "id: 1\n"
            "\n"
            + frame(content="only")
            + "data: [DONE]\n\n"
        ).encode()
        recorder, session = await decode([data])

        assert recorder.chunks == ["only", "[DONE]"]
        assert session.stats.data_line_count == 2


class TestDecodeErrors:
    """Malformed frames are dropped without ending the session."""

    async def test_malformed_frame_between_valid_frames(self):
        """Test only the malformed frame is skipped."""
        data = (
            frame(content="before")
            + 'data: {"choices":[{"delta":{"content":\n\n'
            + frame(content="after", reasoning="r")
            + "data: [DONE]\n\n"
        ).encode()
        recorder, session = await decode([data])

        assert recorder.calls == [
            ("chunk", "before"),
            ("chunk", "after"),
            ("thinking", "r"),
            ("chunk", "[DONE]"),
        ]
        assert session.state is SessionState.COMPLETED
        assert len(session.decode_errors) == 1
        assert isinstance(session.decode_errors[0], DecodeError)

    async def test_decode_failure_is_logged(self, caplog):
        """Test a dropped frame is reported as a warning."""
        with caplog.at_level("WARNING", logger="chatstream_sdk.session"):
            await decode([b"data: nonsense\n\n"])
        assert any("undecodable" in record.getMessage() for record in caplog.records)


class TestTermination:
    """Exactly-once termination and failure behavior."""

    async def test_sentinel_stops_reading(self):
        """Test nothing after [DONE] is read or dispatched."""
        pulled = []
        closed = []

        async def source():
            try:
                for chunk in [frame(content="a").encode(), b"data: [DONE]\n\n", frame(content="late").encode()]:
                    pulled.append(chunk)
                    yield chunk
            finally:
                closed.append(True)

        recorder = Recorder()
        session = StreamSession()
        state = await session.run(source(), recorder.on_chunk)

        assert state is SessionState.COMPLETED
        assert recorder.chunks == ["a", "[DONE]"]
        assert len(pulled) == 2
        assert closed == [True]

    async def test_frames_after_done_in_same_chunk_are_ignored(self):
        """Test frames following the sentinel in one chunk are dropped."""
        data = ("data: [DONE]\n\n" + frame(content="late")).encode()
        recorder, _ = await decode([data])
        assert recorder.chunks == ["[DONE]"]

    async def test_read_error_fails_session(self):
        """Test a chunk source failing mid-stream propagates and emits no marker."""
        async def source():
            yield frame(content="a").encode()
            raise ConnectionResetError("peer reset")

        recorder = Recorder()
        session = StreamSession()
        with pytest.raises(UnexpectedReadError) as exc_info:
            await session.run(source(), recorder.on_chunk)

        assert isinstance(exc_info.value.__cause__, ConnectionResetError)
        assert session.state is SessionState.FAILED
        assert recorder.calls == [("chunk", "a")]

    async def test_callback_error_fails_session(self):
        """Test an exception from a callback propagates unchanged."""
        def on_chunk(text):
            raise RuntimeError("ui gone")

        session = StreamSession()
        with pytest.raises(RuntimeError, match="ui gone"):
            await session.run(chunk_source([frame(content="a").encode()]), on_chunk)
        assert session.state is SessionState.FAILED

    async def test_session_cannot_be_reused(self):
        """Test running a finished session raises."""
        _, session = await decode([b"data: [DONE]\n\n"])
        with pytest.raises(SessionError):
            await session.run(chunk_source([]), lambda text: None)

    async def test_fail_only_from_idle(self):
        """Test fail() marks an idle session and rejects a finished one."""
        session = StreamSession()
        session.fail(RuntimeError("HTTP 500"))
        assert session.state is SessionState.FAILED
        assert session.finished

        _, done = await decode([])
        with pytest.raises(SessionError):
            done.fail(RuntimeError("late"))


class TestCancellation:
    """Cooperative cancellation via StreamSession.abort()."""

    async def test_abort_before_run(self):
        """Test a session aborted before streaming delivers only [ABORTED]."""
        recorder = Recorder()
        session = StreamSession()
        assert session.abort() is True

        state = await session.run(chunk_source([frame(content="a").encode()]), recorder.on_chunk)

        assert state is SessionState.ABORTED
        assert recorder.calls == [("chunk", "[ABORTED]")]
        assert session.terminal_emitted is False

    async def test_abort_interrupts_pending_read(self):
        """Test abort() wakes a loop blocked on a silent source."""
        recorder = Recorder()
        source = BlockingSource([frame(content="a").encode()])
        session = StreamSession()
        task = asyncio.create_task(session.run(source, recorder.on_chunk, recorder.on_thinking))

        await wait_for(lambda: recorder.chunks == ["a"])
        assert session.active
        session.abort()
        state = await asyncio.wait_for(task, timeout=1)

        assert state is SessionState.ABORTED
        assert recorder.calls == [("chunk", "a"), ("chunk", "[ABORTED]")]
        assert source.closed is True

    async def test_chunk_read_during_abort_is_discarded(self):
        """Test a read that completes after abort() dispatches nothing."""
        recorder = Recorder()
        session = StreamSession()

        async def source():
            yield frame(content="one").encode()
            session.abort()
            yield frame(content="two").encode()

        state = await session.run(source(), recorder.on_chunk)

        assert state is SessionState.ABORTED
        assert recorder.chunks == ["one", "[ABORTED]"]

    async def test_abort_from_callback_stops_remaining_frames(self):
        """Test frames later in the same chunk are not dispatched after abort."""
        recorder = Recorder()
        session = StreamSession()

        def on_chunk(text):
            recorder.on_chunk(text)
            if text == "first":
                session.abort()

        data = (frame(content="first", reasoning="r1") + frame(content="second")).encode()
        state = await session.run(chunk_source([data]), on_chunk, recorder.on_thinking)

        assert state is SessionState.ABORTED
        assert recorder.calls == [("chunk", "first"), ("chunk", "[ABORTED]")]

    async def test_abort_is_idempotent(self):
        """Test repeated abort() calls deliver a single marker."""
        recorder = Recorder()
        source = BlockingSource([])
        session = StreamSession()
        task = asyncio.create_task(session.run(source, recorder.on_chunk))
        await asyncio.sleep(0)

        assert session.abort() is True
        assert session.abort() is False
        await asyncio.wait_for(task, timeout=1)
        assert session.abort() is False

        assert recorder.calls == [("chunk", "[ABORTED]")]

    async def test_abort_after_completion_is_noop(self):
        """Test aborting a completed session changes nothing."""
        recorder, session = await decode([b"data: [DONE]\n\n"])
        assert session.abort() is False
        assert session.state is SessionState.COMPLETED
        assert recorder.chunks == ["[DONE]"]

    async def test_task_cancellation_reports_abort(self):
        """Test cancelling the running task still yields one [ABORTED] marker."""
        recorder = Recorder()
        session = StreamSession()
        task = asyncio.create_task(session.run(BlockingSource([]), recorder.on_chunk))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert session.state is SessionState.ABORTED
        assert recorder.calls == [("chunk", "[ABORTED]")]

    async def test_finish_aborted_without_stream(self):
        """Test an idle aborted session can be ended without a chunk source."""
        recorder = Recorder()
        session = StreamSession()
        session.abort()

        assert session.finish_aborted(recorder.on_chunk) is SessionState.ABORTED
        assert recorder.calls == [("chunk", "[ABORTED]")]
        assert session.finished

    def test_finish_aborted_requires_abort(self):
        """Test finish_aborted() refuses a session nobody aborted."""
        session = StreamSession()
        with pytest.raises(SessionError):
            session.finish_aborted(lambda text: None)
        assert session.state is SessionState.IDLE

    async def test_wait_aborted(self):
        """Test wait_aborted() returns once abort() is called."""
        session = StreamSession()
        waiter = asyncio.create_task(session.wait_aborted())
        await asyncio.sleep(0)
        assert not waiter.done()

        session.abort()
        await asyncio.wait_for(waiter, timeout=1)


class TestSessionRegistry:
    """Tests for SessionRegistry class."""

    @pytest.fixture
    def registry(self):
        """Create a fresh registry for each test."""
        return SessionRegistry()

    def test_begin_creates_idle_session(self, registry):
        """Test begin() registers a fresh session."""
        session = registry.begin("panel")
        assert session.state is SessionState.IDLE
        assert session.consumer == "panel"
        assert registry.active("panel") is session

    def test_new_session_aborts_previous(self, registry):
        """Test last-writer-wins for one consumer."""
        first = registry.begin("panel")
        second = registry.begin("panel")

        assert first.cancelled is True
        assert second.cancelled is False
        assert registry.active("panel") is second

    def test_consumers_are_independent(self, registry):
        """Test sessions of different consumers don't affect each other."""
        left = registry.begin("left")
        right = registry.begin("right")

        assert registry.abort("left") is True
        assert left.cancelled is True
        assert right.cancelled is False

    def test_abort_without_session_is_noop(self, registry):
        """Test abort() with nothing active returns False."""
        assert registry.abort("nobody") is False

    async def test_finished_session_is_not_active(self, registry):
        """Test completed sessions drop out of active()."""
        session = registry.begin()
        await session.run(chunk_source([b"data: [DONE]\n\n"]), lambda text: None)

        assert registry.active() is None
        assert registry.abort() is False

    def test_release_only_removes_current(self, registry):
        """Test releasing a replaced session keeps its successor."""
        first = registry.begin("panel")
        second = registry.begin("panel")

        registry.release(first)
        assert registry.active("panel") is second

        registry.release(second)
        assert registry.active("panel") is None

    async def test_replaced_streaming_session_ends_aborted(self, registry):
        """Test starting a new request aborts a prior one mid-stream."""
        recorder = Recorder()
        first = registry.begin("panel")
        task = asyncio.create_task(first.run(BlockingSource([frame(content="a").encode()]), recorder.on_chunk))
        await wait_for(lambda: recorder.chunks == ["a"])

        registry.begin("panel")
        state = await asyncio.wait_for(task, timeout=1)

        assert state is SessionState.ABORTED
        assert recorder.chunks == ["a", "[ABORTED]"]
