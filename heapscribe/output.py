"""Opening the trace output and writing its header and bookkeeping lines."""

from __future__ import annotations

import mmap
import os
import sys
import time
from typing import BinaryIO, Iterable, Optional, Union

try:
    import fcntl
except ImportError:  # pragma: no cover - platforms without flock
    fcntl = None

from .linewriter import LineWriter

VERSION_MAJOR = 1
VERSION_MINOR = 5
VERSION_PATCH = 0
HEAPTRACK_VERSION = (VERSION_MAJOR << 16) | (VERSION_MINOR << 8) | VERSION_PATCH
"""Tracker version packed as ``major << 16 | minor << 8 | patch``."""

FILE_FORMAT_VERSION = 3
"""Version of the data format written by the tracker."""

DEFAULT_OUTPUT = "heaptrack.$$"
"""Output name used when none is given; ``$$`` becomes the process id."""

EXE_LINK_PATH = "/proc/self/exe"
CMDLINE_PATH = "/proc/self/cmdline"
STATM_PATH = "/proc/self/statm"
MAPS_PATH = "/proc/self/maps"

_EXE_BUF_SIZE = 1023
_CMDLINE_BUF_SIZE = 4096

_start_ns: Optional[int] = None


class OutputError(OSError):
    """Raised when the trace output cannot be opened, locked or read."""


def output_path(file_name: Optional[str], pid: int) -> str:
    """Resolve the output file name, replacing every ``$$`` with ``pid``."""
    name = file_name or DEFAULT_OUTPUT
    return name.replace("$$", str(pid))


def open_output(file_name: Optional[Union[str, bytes]] = None) -> BinaryIO:
    """Open and exclusively lock the output; return an unbuffered binary stream.

    ``-`` and ``stdout`` select standard output, ``stderr`` standard error.
    An existing file is written over in place, not truncated.
    """
    name = "" if file_name is None else os.fsdecode(file_name)
    if name in ("-", "stdout"):
        return os.fdopen(os.dup(1), "wb", buffering=0)
    if name == "stderr":
        return os.fdopen(os.dup(2), "wb", buffering=0)

    path = output_path(name, os.getpid())
    flags = os.O_CREAT | os.O_WRONLY | getattr(os, "O_CLOEXEC", 0)
    try:
        fd = os.open(path, flags, 0o644)
    except OSError as exc:
        raise OutputError(
            exc.errno, f"failed to open heaptrack output file {path}: {exc.strerror}"
        ) from exc

    if fcntl is not None:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            os.close(fd)
            raise OutputError(
                exc.errno, f"failed to lock heaptrack output file {path}: {exc.strerror}"
            ) from exc
    return os.fdopen(fd, "wb", buffering=0)


def elapsed_ms() -> int:
    """Whole milliseconds since the first call of this function."""
    global _start_ns
    now = time.monotonic_ns()
    if _start_ns is None:
        _start_ns = now
    return (now - _start_ns) // 1_000_000


def write_version(writer: LineWriter) -> None:
    """Write the ``v`` line with the tracker and file-format versions."""
    writer.write_hex_line("v", HEAPTRACK_VERSION, FILE_FORMAT_VERSION)


def write_exe(writer: LineWriter) -> None:
    """Write the ``x`` line naming the running executable, if it is known."""
    try:
        exe = os.readlink(os.fsencode(EXE_LINK_PATH))
    except OSError:
        return
    if 0 < len(exe) < _EXE_BUF_SIZE:
        writer.write(b"x %x %s\n" % (len(exe), exe))


def _own_command_line() -> list[bytes]:
    try:
        with open(CMDLINE_PATH, "rb") as stream:
            data = stream.read(_CMDLINE_BUF_SIZE)
    except OSError:
        return [os.fsencode(arg) for arg in sys.orig_argv]
    if not data:
        return []
    parts = data.split(b"\0")
    if data.endswith(b"\0"):
        parts.pop()
    return parts


def write_command_line(
    writer: LineWriter, argv: Optional[Iterable[Union[str, bytes]]] = None
) -> None:
    """Write the ``X`` line with the arguments, by default the process's own."""
    args = _own_command_line() if argv is None else [os.fsencode(arg) for arg in argv]
    writer.write("X")
    for arg in args:
        writer.write(b" " + arg)
    writer.write("\n")


def write_system_info(writer: LineWriter) -> None:
    """Write the ``I`` line with the page size and the number of physical pages."""
    try:
        page_size = os.sysconf("SC_PAGESIZE")
    except (ValueError, OSError, AttributeError):
        page_size = mmap.PAGESIZE
    try:
        phys_pages = os.sysconf("SC_PHYS_PAGES")
    except (ValueError, OSError, AttributeError):
        phys_pages = 0
    writer.write_hex_line("I", max(page_size, 0), max(phys_pages, 0))


def write_suppressions(
    writer: LineWriter, suppressions: Optional[Union[str, Iterable[str]]]
) -> None:
    """Write one ``S`` line with a sized string per suppression rule.

    A single string is split into lines; ``None`` writes nothing.
    """
    if suppressions is None:
        return
    if isinstance(suppressions, str):
        lines = suppressions.split("\n")
        if lines and lines[-1] == "":
            lines.pop()
    else:
        lines = list(suppressions)
    for line in lines:
        writer.write("S ")
        writer.write_string(line)
        writer.write("\n")


def read_rss_pages() -> int:
    """Resident set size of this process, in pages."""
    try:
        with open(STATM_PATH, "rb") as stream:
            fields = stream.read(512).split()
    except OSError as exc:
        raise OutputError(exc.errno, f"failed to read RSS value from {STATM_PATH}") from exc
    try:
        int(fields[0])
        return int(fields[1])
    except (IndexError, ValueError) as exc:
        raise OutputError(f"failed to read RSS value from {STATM_PATH}") from exc


def _loaded_modules() -> list[tuple[bytes, int, list[tuple[int, int]]]]:
    try:
        with open(MAPS_PATH, "rb") as stream:
            lines = stream.read().splitlines()
    except OSError as exc:
        raise OutputError(exc.errno, f"failed to read module list from {MAPS_PATH}") from exc

    ranges: dict[bytes, list[tuple[int, int]]] = {}
    for line in lines:
        fields = line.split(maxsplit=5)
        if len(fields) < 6 or not fields[5].startswith(b"/"):
            continue
        try:
            start_text, end_text = fields[0].split(b"-")
            start, end = int(start_text, 16), int(end_text, 16)
        except ValueError:
            continue
        ranges.setdefault(fields[5], []).append((start, end))

    try:
        exe = os.readlink(os.fsencode(EXE_LINK_PATH))
    except OSError:
        exe = None

    modules = []
    for path, spans in ranges.items():
        base = min(start for start, _ in spans)
        segments = [(start - base, end - start) for start, end in spans]
        modules.append((b"x" if path == exe else path, base, segments))
    return modules


def write_module_cache(writer: LineWriter) -> int:
    """Write the module list, starting with the ``m 1 -`` reset line.

    Each module line holds the name, load address and its mapped segments as
    offset/size pairs. Returns the number of modules written.
    """
    modules = _loaded_modules()
    writer.write("m 1 -\n")
    for name, base, segments in modules:
        writer.write(b"m %x %s %x" % (len(name), name, base))
        for offset, size in segments:
            writer.write(b" %x %x" % (offset, size))
        writer.write("\n")
    return len(modules)