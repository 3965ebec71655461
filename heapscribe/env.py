"""Reports how the tracker library can be loaded into a running process."""

from __future__ import annotations

import os
import platform as _platform_mod
import re
import sys
from typing import Optional, Sequence

RTLD_NOW = getattr(os, "RTLD_NOW", 2)
LM_ID_BASE = 0

# glibc merged libdl in 2.34 and dropped __libc_dlopen_mode with it
_GLIBC_WITHOUT_LIBC_DLOPEN = (2, 34)


def _version_tuple(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in re.findall(r"\d+", version))


def dlopen_line(lib: str, platform: Optional[str] = None) -> str:
    """Return the debugger expression that loads ``lib`` into a process.

    ``platform`` is a ``sys.platform`` value and defaults to the current one.
    """
    system = sys.platform if platform is None else platform
    if system.startswith("freebsd"):
        return f"'dlopen@plt'(\"{lib}\", {RTLD_NOW:#x})"

    libc, version = _platform_mod.libc_ver()
    if libc == "glibc":
        if _version_tuple(version) < _GLIBC_WITHOUT_LIBC_DLOPEN:
            return f'__libc_dlopen_mode("{lib}", 0x80000000 | 0x002)'
        return f'dlmopen({LM_ID_BASE:#x}, "{lib}", {RTLD_NOW:#x})'
    return f'dlopen("{lib}", {RTLD_NOW:#x})'


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run a check named by the first argument; return the exit status."""
    args = sys.argv[1:] if argv is None else list(argv)
    if not args:
        print("missing check", file=sys.stderr)
        return 1

    check = args[0]
    if check == "dlopen":
        if len(args) != 2:
            print("missing lib arg", file=sys.stderr)
            return 1
        print(dlopen_line(args[1]))
        return 0

    print(f"unsupported check {check}", file=sys.stderr)
    return 1