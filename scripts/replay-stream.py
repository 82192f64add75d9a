#!/usr/bin/env python3
"""
Replay a captured SSE transcript through the stream decoder.
Run with: python scripts/replay-stream.py [transcript.sse]

Decodes the transcript once as a single chunk, then again split into
chunks of several sizes (including one byte at a time) and with CRLF
line endings, and checks that every run dispatches exactly the same
callbacks followed by exactly one terminal marker.

IMPORTANT: This is a RELEASE GATE requirement. This script must pass
before any release.
"""
import asyncio
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "python"))

from chatstream_sdk.frames import ABORTED_MARKER, DONE_SENTINEL  # noqa: E402
from chatstream_sdk.session import StreamSession  # noqa: E402

CHUNK_SIZES = [1, 2, 3, 7, 16, 64, 512]


async def replay(chunks: list[bytes]) -> list[tuple[str, str]]:
    """
    Run one session over the given chunks.

    Args:
        chunks: Raw byte chunks in stream order

    Returns:
        Callback invocations as (channel, text) pairs
    """
    calls: list[tuple[str, str]] = []

    async def source():
        for chunk in chunks:
            yield chunk

    session = StreamSession("replay")
    await session.run(
        source(),
        lambda text: calls.append(("chunk", text)),
        lambda text: calls.append(("thinking", text)),
    )
    return calls


def split(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def main() -> int:
    """
    Main verification function.

    Returns:
        0 if all replays agree, 1 otherwise
    """
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    default_path = Path(__file__).parent.parent / "fixtures" / "sample-stream.sse"
    transcript_path = Path(sys.argv[1]) if len(sys.argv) > 1 else default_path

    if not transcript_path.exists():
        print(f"ERROR: Transcript not found at {transcript_path}")
        return 1

    data = transcript_path.read_bytes()
    lf_data = data.replace(b"\r\n", b"\n")

    expected = asyncio.run(replay([lf_data]))

    print(f"Replaying {transcript_path} ({len(data)} bytes)...\n")
    for channel, text in expected:
        print(f"  {channel:<8} {text!r}")
    print()

    terminals = [text for channel, text in expected if text in (DONE_SENTINEL, ABORTED_MARKER)]
    passed = 0
    failed = 0

    if terminals == [DONE_SENTINEL] and expected[-1] == ("chunk", DONE_SENTINEL):
        print("[PASS] single terminal marker")
        passed += 1
    else:
        print(f"[FAIL] expected exactly one trailing {DONE_SENTINEL}, got {terminals}")
        failed += 1

    variants = [(f"{size}-byte chunks", split(lf_data, size)) for size in CHUNK_SIZES]
    variants.append(("CRLF line endings", split(lf_data.replace(b"\n", b"\r\n"), 5)))

    for name, chunks in variants:
        actual = asyncio.run(replay(chunks))
        if actual == expected:
            print(f"[PASS] {name}")
            passed += 1
        else:
            print(f"[FAIL] {name}")
            print(f"   Expected: {expected}")
            print(f"   Actual:   {actual}")
            failed += 1

    print(f'\n{"=" * 50}')
    print(f"Results: {passed} passed, {failed} failed")

    if failed > 0:
        print("\nVERIFICATION FAILED - Release gate not passed!")
        return 1

    print("\nVERIFICATION PASSED - decoder output is chunk-boundary invariant.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
