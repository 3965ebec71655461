"""Thread-safe recording of heap operations into a trace output."""

from __future__ import annotations

import atexit
import functools
import os
import sys
import threading
import time
from contextlib import contextmanager, suppress
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Iterable, Iterator, Optional, TextIO, Union

from .linewriter import LineWriter, hex_number
from .output import (
    OutputError,
    elapsed_ms,
    open_output,
    read_rss_pages,
    write_command_line,
    write_exe,
    write_module_cache,
    write_suppressions,
    write_system_info,
    write_version,
)
from .tracetree import Trace, TraceTree

Callback = Callable[[], object]
InitializedCallback = Callable[[LineWriter], object]
WarningCallback = Callable[[TextIO], object]
Output = Union[None, str, bytes, BinaryIO]

TIMER_INTERVAL = 0.01
"""Seconds between two timestamp/RSS samples of the timer thread."""


class _GuardState(threading.local):
    active = False


_guard = _GuardState()
_stderr_lock = threading.Lock()


@contextmanager
def _recursion_guard() -> Iterator[None]:
    was_active = _guard.active
    _guard.active = True
    try:
        yield
    finally:
        _guard.active = was_active


@dataclass(eq=False)
class _Session:
    writer: LineWriter
    stop_callback: Optional[Callback]
    tree: TraceTree = field(default_factory=TraceTree)
    module_cache_dirty: bool = True
    rss_available: bool = True
    stop_timer: threading.Event = field(default_factory=threading.Event)
    timer: Optional[threading.Thread] = None


class Recorder:
    """Writes allocations, frees and periodic samples to one trace output.

    All output goes through a single lock. A thread that is already inside
    the recorder does not record again, so callbacks may allocate freely.
    ``timer_interval`` sets the sampling period (``None`` turns sampling
    off) and ``suppressions`` the rules written into the header.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._session: Optional[_Session] = None
        self._paused = False
        self._at_exit = False
        self._force_cleanup = False
        self._hooks_installed = False
        self.timer_interval: Optional[float] = TIMER_INTERVAL
        self.suppressions: Optional[Union[str, Iterable[str]]] = None

    # locking

    def _try_lock(self, stop_check: Callable[[], bool]) -> bool:
        while not self._lock.acquire(blocking=False):
            if stop_check():
                return False
            time.sleep(1e-6)
        return True

    def _op(self, action: Callable[[], object]) -> bool:
        if not self._try_lock(lambda: self._force_cleanup):
            return False
        try:
            action()
        finally:
            self._lock.release()
        return True

    def _record(self, action: Callable[[], object]) -> bool:
        def guarded() -> None:
            try:
                action()
            except OSError:
                self._shutdown()

        return self._op(guarded)

    # lifecycle

    def init(
        self,
        output: Output = None,
        before: Optional[Callback] = None,
        after: Optional[InitializedCallback] = None,
        stop: Optional[Callback] = None,
    ) -> None:
        """Start recording into ``output``: a file name or a binary stream.

        ``before`` runs first, ``after`` receives the writer once the header is
        written, ``stop`` runs when recording ends. Raises
        :class:`OutputError` when the output cannot be opened.
        """
        with _recursion_guard():
            elapsed_ms()
            self._force_cleanup = False
            self._op(lambda: self._initialize(output, before, after, stop))

    def _initialize(
        self,
        output: Output,
        before: Optional[Callback],
        after: Optional[InitializedCallback],
        stop: Optional[Callback],
    ) -> None:
        if self._session is not None:
            return
        if before is not None:
            before()
        self._install_process_hooks()

        try:
            stream = output if hasattr(output, "write") else open_output(output)
        except OutputError:
            if stop is not None:
                stop()
            raise

        writer = LineWriter(stream)
        session = _Session(writer, stop)
        self._session = session
        try:
            write_version(writer)
            write_exe(writer)
            write_command_line(writer)
            write_system_info(writer)
            write_suppressions(writer, self.suppressions)
            if after is not None:
                after(writer)
        except BaseException:
            self._session = None
            self._teardown(session)
            raise
        self._start_timer(session)

    def stop(self) -> None:
        """Finish recording: write a last sample, flush and close the output."""
        with _recursion_guard():

            def action() -> None:
                if not self._at_exit:
                    self._force_cleanup = True
                self._shutdown()

            self._op(action)

    def _shutdown(self) -> None:
        session = self._session
        if session is None:
            return
        with suppress(OSError):
            self._write_timestamp(session)
            self._write_rss(session)
            session.writer.flush()
        with suppress(OSError):
            session.writer.close()
        # at interpreter exit the session is kept so late frees stay harmless
        if not self._at_exit or self._force_cleanup:
            self._session = None
            self._teardown(session)

    @staticmethod
    def _teardown(session: _Session) -> None:
        session.stop_timer.set()
        timer = session.timer
        if timer is not None and timer is not threading.current_thread():
            timer.join()
        with suppress(OSError):
            session.writer.close()
        if session.stop_callback is not None:
            session.stop_callback()

    def _install_process_hooks(self) -> None:
        if self._hooks_installed:
            return
        self._hooks_installed = True
        atexit.register(self._at_exit_handler)
        if hasattr(os, "register_at_fork"):
            os.register_at_fork(
                before=self._prepare_fork,
                after_in_parent=self._parent_fork,
                after_in_child=self._child_fork,
            )

    def _at_exit_handler(self) -> None:
        if self._force_cleanup:
            return
        self._at_exit = True
        self.stop()

    @staticmethod
    def _prepare_fork() -> None:
        _guard.active = True

    @staticmethod
    def _parent_fork() -> None:
        _guard.active = False

    def _child_fork(self) -> None:
        # a forked child must never write into the parent's output
        self._session = None
        _guard.active = True

    # state

    def pause(self) -> None:
        """Ignore allocations and frees until :meth:`resume`."""
        self._paused = True

    def resume(self) -> None:
        """Record allocations and frees again."""
        self._paused = False

    def is_paused(self) -> bool:
        """Whether recording is paused."""
        return self._paused

    def is_active(self) -> bool:
        """Whether an output is open for recording."""
        session = self._session
        return session is not None and session.writer.can_write()

    # recording

    def malloc(self, ptr: int, size: int, trace: Optional[Iterable[int]] = None) -> None:
        """Record an allocation of ``size`` bytes at ``ptr``.

        Without ``trace`` the caller's stack is taken.
        """
        if self._paused or not ptr or _guard.active:
            return
        with _recursion_guard():
            if trace is None:
                trace = Trace()
                trace.fill(1)
            self._record(lambda: self._handle_malloc(ptr, size, trace))

    def free(self, ptr: int) -> None:
        """Record that ``ptr`` was freed."""
        if self._paused or not ptr or _guard.active:
            return
        with _recursion_guard():
            self._record(lambda: self._handle_free(ptr))

    def realloc(
        self, ptr_in: int, size: int, ptr_out: int, trace: Optional[Iterable[int]] = None
    ) -> None:
        """Record that ``ptr_in`` was resized to ``size`` bytes at ``ptr_out``."""
        if self._paused or not ptr_out or _guard.active:
            return
        with _recursion_guard():
            if trace is None:
                trace = Trace()
                trace.fill(1)

            def action() -> None:
                if ptr_in:
                    self._handle_free(ptr_in)
                self._handle_malloc(ptr_out, size, trace)

            self._record(action)

    def invalidate_module_cache(self) -> None:
        """Make the next allocation rewrite the list of loaded modules."""
        with _recursion_guard():

            def action() -> None:
                if self._session is not None:
                    self._session.module_cache_dirty = True

            self._op(action)

    def warning(self, callback: WarningCallback) -> None:
        """Write a tagged warning line to standard error; ``callback`` fills in the text."""
        with _recursion_guard(), _stderr_lock:
            err = sys.stderr
            err.write(
                f"heaptrack warning [{os.getpid()}:{threading.get_native_id()}]@{elapsed_ms()} "
            )
            callback(err)
            err.write("\n")
            err.flush()

    def _handle_malloc(self, ptr: int, size: int, trace: Iterable[int]) -> None:
        session = self._session
        if session is None or not session.writer.can_write():
            return
        hex_number(ptr)
        hex_number(size)
        self._update_module_cache(session)
        writer = session.writer

        def emit(ip: int, parent: int) -> bool:
            # the unwinder reports the instruction after the call
            writer.write_hex_line("t", ip - 1, parent)
            return True

        index = session.tree.index(trace, emit)
        writer.write_hex_line("+", size, index, ptr)

    def _handle_free(self, ptr: int) -> None:
        session = self._session
        if session is None or not session.writer.can_write():
            return
        session.writer.write_hex_line("-", ptr)

    def _update_module_cache(self, session: _Session) -> None:
        if not session.module_cache_dirty:
            return
        try:
            write_module_cache(session.writer)
        except OutputError:
            session.writer.write("m 1 -\n")
        session.module_cache_dirty = False

    # sampling

    @staticmethod
    def _write_timestamp(session: _Session) -> None:
        if session.writer.can_write():
            session.writer.write_hex_line("c", elapsed_ms())

    @staticmethod
    def _write_rss(session: _Session) -> None:
        if not session.writer.can_write() or not session.rss_available:
            return
        try:
            pages = read_rss_pages()
        except OutputError:
            print("WARNING: Failed to read RSS value.", file=sys.stderr)
            session.rss_available = False
            return
        session.writer.write_hex_line("R", pages)

    def _start_timer(self, session: _Session) -> None:
        interval = self.timer_interval
        if not interval:
            return
        session.timer = threading.Thread(
            target=self._timer_loop,
            args=(session, interval),
            name="heaptrack-timer",
            daemon=True,
        )
        session.timer.start()

    def _timer_loop(self, session: _Session, interval: float) -> None:
        _guard.active = True
        while not session.stop_timer.wait(interval):
            if not self._try_lock(session.stop_timer.is_set):
                break
            try:
                with suppress(OSError):
                    self._write_timestamp(session)
                    self._write_rss(session)
            finally:
                self._lock.release()


@functools.lru_cache(maxsize=None)
def default_recorder() -> Recorder:
    """The process-wide recorder."""
    return Recorder()