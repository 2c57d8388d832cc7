"""Newline framing for a raw byte stream.

Each connection owns one StreamFramer. Reads of arbitrary size are fed in
and complete messages come out, in arrival order, once their delimiter has
arrived.
"""

from __future__ import annotations

from collections.abc import Callable

from toolwire.socket_server.protocol import FRAME_DELIMITER


class StreamFramer:
    """Accumulates bytes and splits them into delimiter-terminated messages.

    Args:
        max_size: Largest message accepted, in bytes. ``None`` imposes no limit.
        on_oversized: Called once per rejected message with the number of
            bytes seen when it was dropped.

    Example:
        framer = StreamFramer()
        framer.feed(b'{"a": 1}\\n{"b"')  # [b'{"a": 1}']
        framer.feed(b': 2}\\n')          # [b'{"b": 2}']
    """

    def __init__(
        self,
        max_size: int | None = None,
        on_oversized: Callable[[int], None] | None = None,
        delimiter: bytes = FRAME_DELIMITER,
    ) -> None:
        self._buffer = bytearray()
        self._max_size = max_size
        self._on_oversized = on_oversized
        self._delimiter = delimiter
        # Set while skipping the rest of a message that overflowed max_size
        self._discarding = False

    @property
    def buffered(self) -> int:
        """Number of bytes held back waiting for a delimiter."""
        return len(self._buffer)

    def feed(self, chunk: bytes) -> list[bytes]:
        """Add ``chunk`` and return every message it completes."""
        messages: list[bytes] = []
        self._buffer.extend(chunk)

        while True:
            index = self._buffer.find(self._delimiter)
            if index == -1:
                break
            frame = bytes(self._buffer[:index])
            del self._buffer[: index + len(self._delimiter)]

            if self._discarding:
                self._discarding = False
                continue
            if self._max_size is not None and len(frame) > self._max_size:
                self._reject(len(frame))
                continue
            if frame.strip():
                messages.append(frame)

        if self._discarding:
            self._buffer.clear()
        elif self._max_size is not None and len(self._buffer) > self._max_size:
            self._discarding = True
            self._reject(len(self._buffer))
            self._buffer.clear()

        return messages

    def reset(self) -> None:
        """Drop any partial message."""
        self._buffer.clear()
        self._discarding = False

    def _reject(self, size: int) -> None:
        if self._on_oversized is not None:
            self._on_oversized(size)
