"""Helpers for streaming request and response bodies in chunks."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import BinaryIO

DEFAULT_CHUNK_SIZE = 4096


def length_limited_chunks(
    reader: BinaryIO, limit: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[bytes]:
    """Yield chunks read from `reader`, stopping after `limit` bytes or at EOF.

    Errors raised by the reader propagate and end the stream.
    """
    if limit < 0:
        raise ValueError("limit must not be negative")
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    remaining = limit
    while remaining > 0:
        chunk = reader.read(chunk_size)
        if not chunk:
            return
        chunk = bytes(chunk[:remaining])
        remaining -= len(chunk)
        yield chunk


def data_chunks(frames: Iterable[object]) -> Iterator[bytes]:
    """Yield the data frames of a body, skipping any other frames such as trailers."""
    for frame in frames:
        if isinstance(frame, (bytes, bytearray, memoryview)):
            yield bytes(frame)