"""
Location: python/chatstream_sdk/accumulator.py

Summary:
    Byte-to-text accumulation and line splitting for streamed responses.
    Turns arbitrarily split byte chunks into complete text lines, carrying
    any trailing partial line over to the next chunk.

Usage:
    Used by session.py inside the decode loop. split_lines() is a pure
    function of (buffer, new text) and can be tested without any I/O;
    LineAccumulator threads the buffer and an incremental UTF-8 decoder
    across chunks.

Example:
    from chatstream_sdk.accumulator import LineAccumulator

    acc = LineAccumulator()
    acc.feed(b'data: {"choices":[{"delta"')   # -> []
    acc.feed(b':{"content":"A"}}]}\\n\\n')      # -> ['data: {...}', '']
"""

import codecs
import re

# Matches both CRLF and bare LF terminators.
LINE_BREAK = re.compile(r"\r?\n")


def split_lines(buffer: str, text: str) -> tuple[list[str], str]:
    """
    Split accumulated text into complete lines and a remainder.

    The last element of the split is never treated as complete, even when
    it is empty; it becomes the new buffer.

    Args:
        buffer: Pending partial line from previous chunks
        text: Newly decoded text

    Returns:
        Tuple of (complete lines, new buffer)
    """
    parts = LINE_BREAK.split(buffer + text)
    return parts[:-1], parts[-1]


class LineAccumulator:
    """
    Stateful accumulator that converts raw chunks into complete lines.

    Multi-byte UTF-8 sequences split across chunks are held back by the
    incremental decoder until they complete. Invalid bytes decode to
    U+FFFD rather than raising.

    A CR arriving at the end of one chunk with its LF in the next is kept
    in the buffer, so the pair is still recognised as one terminator.

    Attributes:
        total_bytes: Number of raw bytes fed so far
    """

    def __init__(self, encoding: str = "utf-8"):
        """
        Initialize an empty accumulator.

        Args:
            encoding: Text encoding of the stream (default utf-8)
        """
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.total_bytes = 0

    @property
    def buffer(self) -> str:
        """Pending partial line (never contains a line terminator at rest)."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """
        Accept one raw chunk and return the lines it completed.

        Args:
            chunk: Raw bytes from the chunk source (may be empty)

        Returns:
            Newly available complete lines, in stream order
        """
        if not chunk:
            return []
        self.total_bytes += len(chunk)
        text = self._decoder.decode(chunk)
        lines, self._buffer = split_lines(self._buffer, text)
        return lines

    def flush(self) -> list[str]:
        """
        Finish the stream and return any unterminated trailing line.

        Returns:
            A one-element list holding the trailing fragment, or an empty
            list when nothing is pending
        """
        text = self._decoder.decode(b"", final=True)
        lines, remainder = split_lines(self._buffer, text)
        self._buffer = ""
        if remainder:
            lines.append(remainder)
        return lines
