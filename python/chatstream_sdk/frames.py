"""
Location: python/chatstream_sdk/frames.py

Summary:
    Frame filtering, sentinel detection and per-frame event decoding for
    chat completion SSE streams.

Usage:
    Used by session.py for every complete line produced by the
    accumulator: extract_payload() discards non-frame lines, is_sentinel()
    recognises the terminal literal, and decode_event() turns any other
    payload into a DecodeResult that the loop inspects.

Example:
    from chatstream_sdk.frames import extract_payload, is_sentinel, decode_event

    payload = extract_payload('data: {"choices":[{"delta":{"content":"Hi"}}]}')
    if payload is not None and not is_sentinel(payload):
        result = decode_event(payload)
        if result.ok:
            print(result.event.content_delta)
"""

from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from .exceptions import ChatStreamError
from .types import StreamChunk, StreamEvent


DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
ABORTED_MARKER = "[ABORTED]"

# Longest payload excerpt kept on a DecodeError message.
_EXCERPT_LIMIT = 120


class DecodeError(ChatStreamError):
    """
    A single frame's payload could not be decoded as a stream event.

    Recoverable: the frame is dropped and decoding continues.

    Attributes:
        payload: The offending payload text
    """

    def __init__(self, message: str, payload: str):
        super().__init__(message)
        self.payload = payload


@dataclass(frozen=True)
class DecodeResult:
    """Outcome of decoding one payload: exactly one of event/error is set."""
    event: Optional[StreamEvent] = None
    error: Optional[DecodeError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def extract_payload(line: str) -> Optional[str]:
    """
    Return the payload of a data frame, or None for any other line.

    The line is trimmed before the case-sensitive prefix check, so both
    ``data:`` and ``data: `` forms are accepted. Blank separator lines,
    comments and other SSE fields yield None.

    Args:
        line: One complete line of stream text

    Returns:
        The trimmed text after the prefix, or None
    """
    line = line.strip()
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def is_sentinel(payload: str) -> bool:
    """Check whether a payload is the terminal ``[DONE]`` literal."""
    return payload == DONE_SENTINEL


def decode_event(payload: str) -> DecodeResult:
    """
    Decode a non-sentinel payload into a StreamEvent.

    Missing choices, a missing delta or missing fields are not errors;
    they produce an event without the corresponding delta. Malformed JSON
    or fields of the wrong type produce a DecodeResult carrying a
    DecodeError instead of raising.

    Args:
        payload: Payload text extracted from a data frame

    Returns:
        DecodeResult with either ``event`` or ``error`` set
    """
    try:
        chunk = StreamChunk.model_validate_json(payload)
    except ValidationError as e:
        return DecodeResult(error=_decode_error(payload, e))
    return DecodeResult(event=StreamEvent.from_chunk(chunk))


def _decode_error(payload: str, cause: ValidationError) -> DecodeError:
    excerpt = payload[:_EXCERPT_LIMIT]
    reason = cause.errors()[0]["msg"] if cause.errors() else str(cause)
    error = DecodeError(f"invalid stream frame {excerpt!r}: {reason}", payload)
    error.__cause__ = cause
    return error
