"""
Shared pytest fixtures for chatstream-sdk tests.

This module provides common fixtures used across all test files,
including sample SSE transcripts, chunk-source helpers and a callback
recorder.
"""

import asyncio
import json

import pytest

from chatstream_sdk.types import ClientConfig


def frame(content=None, reasoning=None) -> str:
    """Build one SSE data frame carrying the given deltas."""
    delta = {}
    if content is not None:
        delta["content"] = content
    if reasoning is not None:
        delta["reasoning_content"] = reasoning
    return "data: " + json.dumps({"choices": [{"delta": delta}]}, ensure_ascii=False) + "\n\n"


async def chunk_source(chunks):
    """Async generator yielding the given byte chunks."""
    for chunk in chunks:
        yield chunk


def split_every(data: bytes, size: int) -> list[bytes]:
    """Split a byte string into chunks of at most ``size`` bytes."""
    return [data[i:i + size] for i in range(0, len(data), size)]


class Recorder:
    """Collects callback invocations in call order."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

    def on_chunk(self, text: str) -> None:
        self.calls.append(("chunk", text))

    def on_thinking(self, text: str) -> None:
        self.calls.append(("thinking", text))

    @property
    def chunks(self) -> list[str]:
        return [text for kind, text in self.calls if kind == "chunk"]

    @property
    def thinking(self) -> list[str]:
        return [text for kind, text in self.calls if kind == "thinking"]


class BlockingSource:
    """
    Chunk source that yields queued chunks and then blocks forever,
    like a server that stops sending without closing the connection.
    """

    def __init__(self, chunks):
        self._queue: asyncio.Queue = asyncio.Queue()
        for chunk in chunks:
            self._queue.put_nowait(chunk)
        self.closed = False

    def push(self, chunk: bytes) -> None:
        self._queue.put_nowait(chunk)

    def __aiter__(self):
        return self

    async def __anext__(self) -> bytes:
        return await self._queue.get()

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def recorder():
    """Fresh callback recorder."""
    return Recorder()


@pytest.fixture
def sample_stream() -> bytes:
    """Typical reasoning-model stream: role chunk, thinking, content, [DONE]."""
    return (
        'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"role":"assistant","content":""}}]}\n\n'
        + frame(reasoning="Let me think")
        + frame(reasoning=" about it.")
        + frame(content="Hello")
        + frame(content=", 世界")
        + frame(content="!", reasoning="done")
        + "data: [DONE]\n\n"
    ).encode("utf-8")


@pytest.fixture
def config():
    """Client configuration pointing at a fake endpoint."""
    return ClientConfig(
        base_url="https://api.example.com/",
        api_key="sk-test",
        model="deepseek-chat",
    )
