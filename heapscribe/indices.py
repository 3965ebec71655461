"""Typed indices into the string, trace and allocation tables."""

from __future__ import annotations

from dataclasses import dataclass

_UINT32_MAX = 0xFFFFFFFF


@dataclass(frozen=True, eq=False)
class Index:
    """A 32-bit index; zero means "no entry".

    Indices compare only with indices of the same kind: a module index
    equals a string index with the same value, a trace index never equals
    an instruction-pointer index.
    """

    index: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.index <= _UINT32_MAX:
            raise ValueError(f"index {self.index} is out of the 32-bit range")

    def __bool__(self) -> bool:
        return self.index != 0

    def next(self) -> "Index":
        """The following index of the same type."""
        return type(self)(self.index + 1)

    def _kind(self) -> type:
        for cls in type(self).__mro__:
            if Index in cls.__bases__:
                return cls
        return Index

    def _comparable(self, other: object) -> bool:
        return isinstance(other, Index) and other._kind() is self._kind()

    def __eq__(self, other: object):
        if not self._comparable(other):
            return NotImplemented
        return self.index == other.index

    def __lt__(self, other: object):
        if not self._comparable(other):
            return NotImplemented
        return self.index < other.index

    def __le__(self, other: object):
        if not self._comparable(other):
            return NotImplemented
        return self.index <= other.index

    def __gt__(self, other: object):
        if not self._comparable(other):
            return NotImplemented
        return self.index > other.index

    def __ge__(self, other: object):
        if not self._comparable(other):
            return NotImplemented
        return self.index >= other.index

    def __hash__(self) -> int:
        return hash((self._kind(), self.index))


class StringIndex(Index):
    """Index into the string table."""


class ModuleIndex(StringIndex):
    """String index naming a module."""


class FunctionIndex(StringIndex):
    """String index naming a function."""


class FileIndex(StringIndex):
    """String index naming a source file."""


class IpIndex(Index):
    """Index of an instruction pointer."""


class TraceIndex(Index):
    """Index of a backtrace node."""


class AllocationIndex(Index):
    """Index of an allocation."""


class AllocationInfoIndex(Index):
    """Index of an allocation-info record."""


@dataclass(frozen=True, order=True)
class Symbol:
    """A function within a module."""

    function_id: FunctionIndex = FunctionIndex()
    module_id: ModuleIndex = ModuleIndex()

    def is_valid(self) -> bool:
        """Whether the symbol differs from the empty symbol."""
        return self != Symbol()


@dataclass(frozen=True)
class FileLine:
    """A line within a source file."""

    file_id: FileIndex = FileIndex()
    line: int = 0