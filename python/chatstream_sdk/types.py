"""
Location: python/chatstream_sdk/types.py

Summary:
    Pydantic models for chatstream-sdk. Defines the wire models for a
    streamed chat completion chunk (StreamChunk, StreamChoice, DeltaPayload),
    the decoded application event (StreamEvent), request models
    (ChatMessage, ChatRequest), per-session counters (StreamStats) and
    the client configuration (ClientConfig).

Usage:
    Wire models are used by frames.py to validate a single SSE payload.
    StreamEvent is what the dispatcher consumes. ClientConfig and
    ChatRequest are used by client.py and transport.py.

Example:
    from chatstream_sdk.types import StreamChunk

    chunk = StreamChunk.model_validate_json(
        '{"choices":[{"delta":{"content":"Hi"}}]}'
    )
    print(chunk.choices[0].delta.content)
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class DeltaPayload(BaseModel):
    """
    The incremental fragment carried by one streamed choice.

    Attributes:
        content: Visible text delta
        reasoning_content: Reasoning ("thinking") text delta
    """
    content: Optional[str] = None
    reasoning_content: Optional[str] = None

    model_config = {"extra": "ignore"}


class StreamChoice(BaseModel):
    """A single entry of the ``choices`` array in a streamed chunk."""
    delta: Optional[DeltaPayload] = None

    model_config = {"extra": "ignore"}


class StreamChunk(BaseModel):
    """
    One decoded ``data:`` payload from a chat completion stream.

    Only the fields needed to extract deltas are modelled; ids, usage
    blocks, finish reasons and the like are ignored.
    """
    choices: list[Optional[StreamChoice]] = Field(default_factory=list)

    model_config = {"extra": "ignore"}


class StreamEvent(BaseModel):
    """
    Decoded application event for one frame.

    Either delta may be absent. An event with neither delta is valid and
    simply dispatches nothing (role-only chunks look like this).

    Attributes:
        content_delta: Text for the content channel
        reasoning_delta: Text for the reasoning channel
    """
    content_delta: Optional[str] = None
    reasoning_delta: Optional[str] = None

    @classmethod
    def from_chunk(cls, chunk: StreamChunk) -> "StreamEvent":
        """
        Build an event from the first choice of a validated chunk.

        Args:
            chunk: A validated StreamChunk

        Returns:
            StreamEvent, empty when the chunk has no usable first choice
        """
        if not chunk.choices or chunk.choices[0] is None:
            return cls()
        delta = chunk.choices[0].delta
        if delta is None:
            return cls()
        return cls(
            content_delta=delta.content,
            reasoning_delta=delta.reasoning_content,
        )


class ChatMessage(BaseModel):
    """
    A single chat message sent to the completion endpoint.

    Attributes:
        role: Author of the message
        content: Message text
    """
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """
    Body of a chat completion request.

    Attributes:
        model: Model identifier (e.g., "deepseek-chat")
        messages: Conversation so far
        temperature: Sampling temperature
        stream: Whether the server should stream SSE chunks
    """
    model: str
    messages: list[ChatMessage]
    temperature: float = 0.3
    stream: bool = True


class StreamStats(BaseModel):
    """
    Counters collected while a session decodes its stream.

    Attributes:
        total_bytes: Raw bytes received from the chunk source
        data_line_count: Lines recognised as ``data:`` frames
        event_count: Callbacks fired for content or reasoning deltas
    """
    total_bytes: int = 0
    data_line_count: int = 0
    event_count: int = 0


class ClientConfig(BaseModel):
    """
    Configuration for ChatClient.

    Attributes:
        base_url: API root; ``/chat/completions`` is appended to it
        api_key: Bearer token sent in the Authorization header
        model: Model identifier placed in every request body
        temperature: Default sampling temperature
        timeout: HTTP timeout in seconds
        headers: Extra headers added to every request
    """
    base_url: str = Field("https://api.deepseek.com", alias="baseUrl")
    api_key: Optional[str] = Field(None, alias="apiKey")
    model: str = "deepseek-chat"
    temperature: float = 0.3
    timeout: float = 120.0
    headers: dict[str, str] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @classmethod
    def from_env(cls, prefix: str = "CHATSTREAM_") -> "ClientConfig":
        """
        Build a config from environment variables.

        Reads ``<prefix>BASE_URL``, ``<prefix>API_KEY``, ``<prefix>MODEL``
        and ``<prefix>TIMEOUT``. Unset variables keep their defaults.

        Args:
            prefix: Environment variable prefix

        Returns:
            ClientConfig populated from the environment
        """
        values: dict = {}
        mapping = {
            "BASE_URL": "base_url",
            "API_KEY": "api_key",
            "MODEL": "model",
            "TIMEOUT": "timeout",
        }
        for suffix, field_name in mapping.items():
            raw = os.environ.get(f"{prefix}{suffix}")
            if raw:
                values[field_name] = raw
        return cls(**values)
