"""Aggregated allocation costs and analysis filter settings."""

from __future__ import annotations

from dataclasses import dataclass, field

INT64_MAX = (1 << 63) - 1


@dataclass
class AllocationData:
    """Costs of a set of allocations."""

    allocations: int = 0
    temporary: int = 0
    leaked: int = 0
    peak: int = 0

    def clear_cost(self) -> None:
        """Reset all costs to zero."""
        self.allocations = self.temporary = self.leaked = self.peak = 0

    def __iadd__(self, other: "AllocationData"):
        if not isinstance(other, AllocationData):
            return NotImplemented
        self.allocations += other.allocations
        self.temporary += other.temporary
        self.peak += other.peak
        self.leaked += other.leaked
        return self

    def __isub__(self, other: "AllocationData"):
        if not isinstance(other, AllocationData):
            return NotImplemented
        self.allocations -= other.allocations
        self.temporary -= other.temporary
        self.peak -= other.peak
        self.leaked -= other.leaked
        return self

    def __add__(self, other: "AllocationData"):
        if not isinstance(other, AllocationData):
            return NotImplemented
        return AllocationData(
            allocations=self.allocations + other.allocations,
            temporary=self.temporary + other.temporary,
            leaked=self.leaked + other.leaked,
            peak=self.peak + other.peak,
        )

    def __sub__(self, other: "AllocationData"):
        if not isinstance(other, AllocationData):
            return NotImplemented
        return AllocationData(
            allocations=self.allocations - other.allocations,
            temporary=self.temporary - other.temporary,
            leaked=self.leaked - other.leaked,
            peak=self.peak - other.peak,
        )


@dataclass
class FilterParameters:
    """Time range and suppression settings for an analysis."""

    min_time: int = 0
    max_time: int = INT64_MAX
    suppressions: list[str] = field(default_factory=list)
    disable_embedded_suppressions: bool = False
    disable_builtin_suppressions: bool = False

    def is_filtered_by_time(self, total_time: int) -> bool:
        """Whether the time range cuts off part of a run of ``total_time``."""
        return self.min_time != 0 or self.max_time < total_time