"""Reporting the allocations of custom allocators to the process-wide recorder.

Nothing is recorded unless the recorder returned by
:func:`heapscribe.recorder.default_recorder` has been started.
"""

from __future__ import annotations

from typing import Any

from .recorder import default_recorder
from .tracetree import Trace


def report_alloc(ptr: int, size: int) -> None:
    """Report that ``size`` bytes were allocated at ``ptr``."""
    recorder = default_recorder()
    if not recorder.is_active():
        return
    trace = Trace()
    trace.fill(1)
    recorder.malloc(ptr, size, trace)


def report_realloc(ptr_in: int, size: int, ptr_out: int) -> None:
    """Report that ``ptr_in`` was resized to ``size`` bytes at ``ptr_out``."""
    recorder = default_recorder()
    if not recorder.is_active():
        return
    trace = Trace()
    trace.fill(1)
    recorder.realloc(ptr_in, size, ptr_out, trace)


def report_free(ptr: int) -> None:
    """Report that ``ptr`` was freed."""
    default_recorder().free(ptr)


def mempool_alloc(pool: Any, ptr: int, size: int) -> None:
    """Pool-allocator variant of :func:`report_alloc`; the pool is ignored."""
    recorder = default_recorder()
    if not recorder.is_active():
        return
    trace = Trace()
    trace.fill(1)
    recorder.malloc(ptr, size, trace)


def mempool_free(pool: Any, ptr: int) -> None:
    """Pool-allocator variant of :func:`report_free`; the pool is ignored."""
    default_recorder().free(ptr)