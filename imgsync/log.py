"""Console output for imgsync.

Every line carries a bracketed level tag.  Progress and results go to
stdout, problems and debug chatter to stderr, so ``imgsync images --json``
stays machine-readable while a transfer is being reported.  ANSI colors
are used only on a terminal; :func:`set_color` overrides the detection.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager

_ESC = {
    "reset": "\033[0m",
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

# level tag -> (stream attribute on sys, color)
_LEVELS = {
    "debug": ("stderr", "dim"),
    "info": ("stdout", "blue"),
    "warn": ("stderr", "yellow"),
    "error": ("stderr", "red"),
    "ok": ("stdout", "green"),
}

_use_color: bool | None = None
_verbose = False


def set_color(enabled: bool) -> None:
    global _use_color
    _use_color = enabled


def set_verbose(enabled: bool) -> None:
    """Show or hide :func:`debug` lines (the CLI's ``-v``)."""
    global _verbose
    _verbose = enabled


def _c(name: str) -> str:
    global _use_color
    if _use_color is None:
        _use_color = bool(getattr(sys.stdout, "isatty", None) and sys.stdout.isatty())
    return _ESC.get(name, "") if _use_color else ""


def _emit(level: str, message: str) -> None:
    stream_name, color = _LEVELS[level]
    # sys.stdout / sys.stderr as of this call
    stream = getattr(sys, stream_name)
    stream.write(f"{_c(color)}[{level}]{_c('reset')} {message}\n")
    stream.flush()


def step(message: str) -> None:
    """Header for a multi-part operation: ``=== Re-push a -> b ===``."""
    sys.stdout.write(f"{_c('bold')}{_c('cyan')}=== {message} ==={_c('reset')}\n")
    sys.stdout.flush()


def debug(message: str) -> None:
    if _verbose:
        _emit("debug", message)


def info(message: str) -> None:
    _emit("info", message)


def warn(message: str) -> None:
    _emit("warn", message)


def error(message: str) -> None:
    _emit("error", message)


def success(message: str) -> None:
    _emit("ok", message)


# ── Timing ────────────────────────────────────────────────────────────

@contextmanager
def timed(name: str) -> Iterator[None]:
    """Report how long the block took, if it completes.

    A block that raises reports nothing; the error is the caller's to log.
    """
    start = time.monotonic()
    yield
    info(f"{name} completed in {format_elapsed(time.monotonic() - start)}")


def format_elapsed(seconds: float) -> str:
    """``12.3s`` below a minute, ``2m5.0s`` above."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(seconds, 60)
    return f"{int(minutes)}m{secs:.1f}s"
