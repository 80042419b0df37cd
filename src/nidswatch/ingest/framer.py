"""
Line framing for sensor output.

Recovers complete newline-terminated records from a byte stream whose
chunk boundaries have no relation to line boundaries.
"""

from __future__ import annotations

import logging
from typing import AsyncIterable, AsyncIterator, Iterable, Iterator


logger = logging.getLogger(__name__)

DELIMITER = b"\n"


class LineFramer:
    """
    Incremental newline framer.

    Only the undelimited tail of the data seen so far is retained between
    calls. Lines are decoded as UTF-8 after framing, so a multi-byte
    character split across chunks is reassembled before decoding.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self.encoding = encoding
        self._buffer = bytearray()
        self._ended = False
        self.lines_emitted = 0
        self.bytes_dropped = 0

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet emitted as a line."""
        return len(self._buffer)

    def feed(self, chunk: bytes | str) -> Iterator[str]:
        """
        Add a chunk and lazily yield every line it completes.

        Lines left unconsumed when the caller stops iterating stay buffered
        and are yielded by the next call.

        Args:
            chunk: Next piece of the stream

        Yields:
            Stripped, non-blank lines in receipt order
        """
        if self._ended:
            raise RuntimeError("Cannot feed a framer after end of stream")
        if isinstance(chunk, str):
            chunk = chunk.encode(self.encoding)
        self._buffer.extend(chunk)
        return self._drain()

    def _drain(self) -> Iterator[str]:
        while True:
            boundary = self._buffer.find(DELIMITER)
            if boundary == -1:
                return
            raw = bytes(self._buffer[:boundary])
            del self._buffer[: boundary + 1]

            line = raw.decode(self.encoding, errors="replace").strip()
            if not line:
                continue
            self.lines_emitted += 1
            yield line

    def end(self) -> None:
        """
        Mark the stream as ended.

        A trailing fragment with no delimiter is discarded.
        """
        if self._buffer:
            logger.debug("Dropping %d undelimited trailing bytes", len(self._buffer))
            self.bytes_dropped += len(self._buffer)
            self._buffer.clear()
        self._ended = True


def iter_lines(chunks: Iterable[bytes | str], encoding: str = "utf-8") -> Iterator[str]:
    """
    Frame a finite iterable of chunks into lines.

    Args:
        chunks: Stream pieces in order
        encoding: Text encoding of the stream

    Yields:
        Complete lines
    """
    framer = LineFramer(encoding)
    for chunk in chunks:
        yield from framer.feed(chunk)
    framer.end()


async def aiter_lines(
    chunks: AsyncIterable[bytes], encoding: str = "utf-8"
) -> AsyncIterator[str]:
    """Async counterpart of iter_lines for process pipes."""
    framer = LineFramer(encoding)
    async for chunk in chunks:
        for line in framer.feed(chunk):
            yield line
    framer.end()
