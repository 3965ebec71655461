"""Backtraces and the top-down tree that deduplicates them."""

from __future__ import annotations

import bisect
import sys
from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, Optional, TextIO

MAX_SIZE = 64
"""Largest number of frames a single trace records."""

# Maps every instruction pointer handed out by Trace.fill to a readable location.
_LOCATIONS: dict[int, str] = {}


def _frame_ip(frame) -> int:
    code = frame.f_code
    ip = id(code) + max(frame.f_lasti, 0) + 1
    if ip not in _LOCATIONS:
        _LOCATIONS[ip] = f"{code.co_name} ({code.co_filename}:{frame.f_lineno})"
    return ip


class Trace:
    """A backtrace: instruction pointers from the innermost frame outwards."""

    def __init__(self, ips: Iterable[int] = ()) -> None:
        self._ips: list[int] = list(ips)
        if len(self._ips) > MAX_SIZE:
            raise ValueError(f"a trace holds at most {MAX_SIZE} frames")

    def fill(self, skip: int) -> bool:
        """Record the caller's stack, leaving out the ``skip`` innermost frames.

        Returns whether any frame is left after skipping.
        """
        if skip < 0:
            raise ValueError("skip must not be negative")
        ips: list[int] = []
        frame = sys._getframe(1)
        while frame is not None and len(ips) < MAX_SIZE:
            ips.append(_frame_ip(frame))
            frame = frame.f_back
        while ips and not ips[-1]:
            ips.pop()
        self._ips = ips[skip:] if len(ips) > skip else []
        return bool(self._ips)

    def fill_test_data(self, n: int, leaf: int) -> None:
        """Fill with ``leaf`` followed by the pointers ``1`` to ``n``."""
        if not 0 <= n < MAX_SIZE:
            raise ValueError(f"n must be below {MAX_SIZE}")
        self._ips = [leaf, *range(1, n + 1)]

    def __len__(self) -> int:
        return len(self._ips)

    def __getitem__(self, i: int) -> int:
        return self._ips[i]

    def __iter__(self) -> Iterator[int]:
        return iter(self._ips)

    def print(self, out: Optional[TextIO] = None) -> None:
        """Write one line per frame to ``out`` (standard error by default)."""
        out = sys.stderr if out is None else out
        for number, ip in enumerate(self._ips, start=1):
            location = _LOCATIONS.get(ip, "<unknown>")
            out.write(f"#{number:<2} 0x{ip:016x} {location}\n")


@dataclass
class TraceEdge:
    """A node of the trace tree; children are kept sorted by pointer."""

    instruction_pointer: int
    index: int
    children: list["TraceEdge"] = field(default_factory=list)


class TraceTree:
    """Top-down tree of all instruction pointers seen in any trace."""

    def __init__(self) -> None:
        self._root = TraceEdge(0, 0)
        self._next_index = 1

    def clear(self) -> None:
        """Forget all traces and restart numbering at 1."""
        self._root.children.clear()
        self._next_index = 1

    def index(
        self,
        trace: Iterable[int],
        callback: Optional[Callable[[int, int], object]] = None,
    ) -> int:
        """Return the index of the trace's innermost pointer.

        Every pointer not seen before under its parent gets a new index and is
        reported as ``callback(ip, parent_index)``; a falsy result aborts and
        makes the call return 0.
        """
        index = 0
        parent = self._root
        for ip in reversed(list(trace)):
            if not ip:
                continue
            children = parent.children
            pos = bisect.bisect_left(children, ip, key=lambda edge: edge.instruction_pointer)
            if pos == len(children) or children[pos].instruction_pointer != ip:
                new_index = self._next_index
                self._next_index += 1
                children.insert(pos, TraceEdge(ip, new_index))
                if callback is not None and not callback(ip, parent.index):
                    return 0
            edge = children[pos]
            index = edge.index
            parent = edge
        return index