"""Buffered writer for the line-oriented heap trace format."""

from __future__ import annotations

import errno
from typing import BinaryIO, Optional, Union

BUFFER_CAPACITY = 4096
"""Size of the internal buffer; a single message must stay below it."""

_MAX_HEX_CHARS = 16
_UINT64_MAX = (1 << 64) - 1


def hex_number(value: int) -> str:
    """Format an unsigned 64-bit value as lower-case hex without prefix."""
    if not isinstance(value, int):
        raise TypeError(f"expected an integer, got {type(value).__name__}")
    if value < 0 or value > _UINT64_MAX:
        raise ValueError(f"value {value} is not an unsigned 64-bit number")
    return format(value, "x")


class LineWriter:
    """Collects output lines in a buffer and hands them to a binary stream.

    Data reaches the stream when the buffer runs out of space or on
    :meth:`flush`. :meth:`close` drops whatever was not flushed; leaving a
    ``with`` block flushes first.
    """

    def __init__(self, stream: BinaryIO) -> None:
        self._stream: Optional[BinaryIO] = stream
        self._buffer = bytearray()

    def _available(self) -> int:
        return BUFFER_CAPACITY - len(self._buffer)

    def _ensure_open(self) -> None:
        if self._stream is None:
            raise ValueError("I/O operation on a closed LineWriter")

    def _write_all(self, data: bytes) -> None:
        while data:
            written = self._stream.write(data)
            if written is None or written >= len(data):
                return
            data = data[written:]

    @staticmethod
    def _encode(text: Union[str, bytes, bytearray]) -> bytes:
        if isinstance(text, str):
            return text.encode("utf-8")
        return bytes(text)

    def write(self, text: Union[str, bytes]) -> None:
        """Append preformatted text; it must be shorter than the buffer."""
        data = self._encode(text)
        self._ensure_open()
        if len(data) >= self._available():
            if len(data) >= BUFFER_CAPACITY:
                raise OSError(errno.EFBIG, "message does not fit into the line buffer")
            self.flush()
        self._buffer += data

    def write_string(self, line: Union[str, bytes]) -> None:
        """Append a string prefixed by its byte length in hex and a space."""
        data = self._encode(line)
        self._ensure_open()
        if self._available() < _MAX_HEX_CHARS + 1:
            self.flush()
        self._buffer += f"{hex_number(len(data))} ".encode("ascii")
        if self._available() < len(data):
            self.flush()
            if self._available() < len(data):
                self._write_all(data)
                return
        self._buffer += data

    def write_hex_line(self, mode: str, *args: int) -> None:
        """Append a line ``<mode> <hex> <hex> ...`` terminated by a newline."""
        if not args:
            raise TypeError("write_hex_line() needs at least one value")
        try:
            mode_bytes = mode.encode("ascii")
        except (AttributeError, UnicodeEncodeError) as exc:
            raise ValueError(f"invalid line mode {mode!r}") from exc
        if len(mode_bytes) != 1:
            raise ValueError(f"line mode must be a single character, got {mode!r}")
        max_chars = 4 + len(args) * (_MAX_HEX_CHARS + 1)
        if max_chars >= BUFFER_CAPACITY:
            raise ValueError("too many values for a single line")
        fields = " ".join(hex_number(value) for value in args)
        self._ensure_open()
        if max_chars > self._available():
            self.flush()
        self._buffer += mode_bytes + b" " + fields.encode("ascii") + b"\n"

    def flush(self) -> None:
        """Hand all buffered data to the stream."""
        self._ensure_open()
        if not self._buffer:
            return
        self._write_all(bytes(self._buffer))
        self._buffer.clear()

    def can_write(self) -> bool:
        """Whether the writer still has an open stream."""
        return self._stream is not None

    def close(self) -> None:
        """Close the stream, discarding any unflushed data."""
        if self._stream is not None:
            stream, self._stream = self._stream, None
            self._buffer.clear()
            stream.close()

    def __enter__(self) -> "LineWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self.can_write():
            try:
                self.flush()
            finally:
                self.close()