"""Compact maps from allocated pointers to allocation-info indices."""

from __future__ import annotations

import bisect
from dataclasses import dataclass, field
from typing import Optional

from .indices import AllocationInfoIndex, TraceIndex

PAGE_SIZE = 0xFFFF // 4
"""Divisor that splits a pointer into a page part and a 16-bit offset."""

_UINT64_MAX = (1 << 64) - 1


@dataclass(frozen=True)
class IndexedAllocationInfo:
    """Size and trace of an allocation; the index is left out of comparisons."""

    size: int
    trace_index: TraceIndex
    allocation_index: AllocationInfoIndex = field(default=AllocationInfoIndex(), compare=False)


class AllocationInfoSet:
    """Deduplicates (size, trace) pairs and numbers them in insertion order."""

    def __init__(self) -> None:
        self._infos: dict[IndexedAllocationInfo, IndexedAllocationInfo] = {}

    def add(self, size: int, trace_index: TraceIndex) -> tuple[AllocationInfoIndex, bool]:
        """Return the pair's index and whether it was newly added."""
        candidate = IndexedAllocationInfo(size, trace_index, AllocationInfoIndex(len(self._infos)))
        existing = self._infos.get(candidate)
        if existing is not None:
            return existing.allocation_index, False
        self._infos[candidate] = candidate
        return candidate.allocation_index, True

    def __len__(self) -> int:
        return len(self._infos)


class _Page:
    __slots__ = ("small_parts", "indices")

    def __init__(self) -> None:
        self.small_parts: list[int] = []
        self.indices: list[AllocationInfoIndex] = []


def _split(ptr: int) -> tuple[int, int]:
    if not 0 <= ptr <= _UINT64_MAX:
        raise ValueError(f"pointer {ptr} is not an unsigned 64-bit value")
    return divmod(ptr, PAGE_SIZE)


class PointerMap:
    """Maps live pointers to the allocation-info index they were created with.

    Pointers are grouped by page; each page keeps its offsets sorted next to
    the matching indices.
    """

    def __init__(self) -> None:
        self._pages: dict[int, _Page] = {}
        self._count = 0

    def add_pointer(self, ptr: int, allocation_index: AllocationInfoIndex) -> None:
        """Record ``ptr``, replacing any index it already had."""
        big, small = _split(ptr)
        page = self._pages.setdefault(big, _Page())
        pos = bisect.bisect_left(page.small_parts, small)
        if pos < len(page.small_parts) and page.small_parts[pos] == small:
            page.indices[pos] = allocation_index
        else:
            page.small_parts.insert(pos, small)
            page.indices.insert(pos, allocation_index)
            self._count += 1

    def take_pointer(self, ptr: int) -> Optional[AllocationInfoIndex]:
        """Remove ``ptr`` and return its index, or None if it is unknown."""
        big, small = _split(ptr)
        page = self._pages.get(big)
        if page is None:
            return None
        pos = bisect.bisect_left(page.small_parts, small)
        if pos == len(page.small_parts) or page.small_parts[pos] != small:
            return None
        del page.small_parts[pos]
        index = page.indices.pop(pos)
        if not page.indices:
            del self._pages[big]
        self._count -= 1
        return index

    def __len__(self) -> int:
        return self._count