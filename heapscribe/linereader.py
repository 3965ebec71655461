"""Fast reader for lines of the heap trace format."""

from __future__ import annotations

import re
from typing import IO, Iterator, Union

_NON_HEX = re.compile(rb"[^0-9a-f]")


class LineReadError(ValueError):
    """Raised when a field cannot be read from the current line."""


class LineReader:
    """Reads lines of ``<mode> <field> <field> ...`` and parses their fields.

    Hex numbers use lower-case digits only. Strings are either space
    delimited or, with ``expect_sized_strings``, prefixed by their byte
    length in hex.
    """

    def __init__(self, stream: IO, expect_sized_strings: bool = False) -> None:
        self._stream = stream
        self.expect_sized_strings = expect_sized_strings
        self._line = b""
        self._pos = 0

    def next_line(self) -> bool:
        """Advance to the next line; False once the stream is exhausted."""
        raw: Union[str, bytes] = self._stream.readline()
        if not raw:
            return False
        if isinstance(raw, str):
            raw = raw.encode("utf-8", "surrogateescape")
        if raw.endswith(b"\n"):
            raw = raw[:-1]
        self._line = bytes(raw)
        self._pos = 2 if len(self._line) > 2 else len(self._line)
        return True

    def __iter__(self) -> Iterator[str]:
        """Yield the mode of every line as it becomes current."""
        while self.next_line():
            yield self.mode()

    def mode(self) -> str:
        """First character of the line, or ``#`` for an empty line."""
        return chr(self._line[0]) if self._line else "#"

    def line(self) -> str:
        """The whole current line without its newline."""
        return self._line.decode("utf-8", "replace")

    def _token_end(self) -> tuple[int, int]:
        space = self._line.find(b" ", self._pos)
        if space == -1:
            return len(self._line), len(self._line)
        return space, space + 1

    def read_hex(self) -> int:
        """Read the next hex field; an empty field reads as zero."""
        if self._pos >= len(self._line):
            raise LineReadError(f"no field left on line {self.line()!r}")
        token_end, next_pos = self._token_end()
        token = self._line[self._pos:token_end]
        bad = _NON_HEX.search(token)
        if bad:
            offset = self._pos + bad.start()
            raise LineReadError(
                f"unexpected non-hex char {token[bad.start():bad.start() + 1]!r} at offset {offset:#x}"
            )
        self._pos = next_pos
        return int(token, 16) if token else 0

    def read_string(self) -> str:
        """Read the next string field."""
        if self.expect_sized_strings:
            size = self.read_hex()
            start = self._pos
            if size > len(self._line) - start:
                raise LineReadError(f"string of size {size:#x} exceeds the line")
            self._pos = start + size
            value = self._line[start:self._pos]
            if self._pos != len(self._line):
                self._pos += 1
            return value.decode("utf-8", "replace")

        token_end, next_pos = self._token_end()
        if token_end == self._pos:
            raise LineReadError(f"no string field left on line {self.line()!r}")
        value = self._line[self._pos:token_end]
        self._pos = next_pos
        return value.decode("utf-8", "replace")

    def read_flag(self) -> bool:
        """Read a one-character flag; only a NUL character reads as False."""
        if self._pos >= len(self._line):
            raise LineReadError(f"no flag left on line {self.line()!r}")
        flag = self._line[self._pos] != 0
        self._pos += 1
        if self._line[self._pos:self._pos + 1] == b" ":
            self._pos += 1
        return flag