"""
Location: python/chatstream_sdk/__init__.py

Summary:
    Main package initialization for chatstream-sdk. Exports all public
    classes and functions for convenient importing.

Usage:
    from chatstream_sdk import ChatClient, ClientConfig, SessionState

    # Or use the decoder pieces directly
    from chatstream_sdk.accumulator import LineAccumulator, split_lines
    from chatstream_sdk.frames import extract_payload, decode_event

Version: 0.1.0
"""

from .client import ChatClient
from .types import (
    ChatMessage,
    ChatRequest,
    ClientConfig,
    StreamEvent,
    StreamStats,
)
from .accumulator import LineAccumulator, split_lines
from .frames import (
    ABORTED_MARKER,
    DATA_PREFIX,
    DONE_SENTINEL,
    DecodeError,
    DecodeResult,
    decode_event,
    extract_payload,
    is_sentinel,
)
from .dispatch import Dispatcher
from .session import (
    SessionError,
    SessionRegistry,
    SessionState,
    StreamSession,
    UnexpectedReadError,
)
from .transport import ConfigurationError, InvalidResponseError, TransportError
from .exceptions import ChatStreamError

__version__ = "0.1.0"

__all__ = [
    # Main client
    "ChatClient",
    # Types
    "ChatMessage",
    "ChatRequest",
    "ClientConfig",
    "StreamEvent",
    "StreamStats",
    # Decoder pipeline
    "LineAccumulator",
    "split_lines",
    "extract_payload",
    "is_sentinel",
    "decode_event",
    "DecodeResult",
    "Dispatcher",
    "DATA_PREFIX",
    "DONE_SENTINEL",
    "ABORTED_MARKER",
    # Sessions
    "StreamSession",
    "SessionRegistry",
    "SessionState",
    # Exceptions
    "ChatStreamError",
    "ConfigurationError",
    "TransportError",
    "InvalidResponseError",
    "DecodeError",
    "SessionError",
    "UnexpectedReadError",
]
