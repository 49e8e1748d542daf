"""
Timestamped console output for solbuild.

Every user-facing line starts with the time elapsed since the invocation
started, as MM:SS.cc, so a slow compiler group or post-processor stands out
in plain logs:

    00:00.02 solbuild v0.3.0
    00:00.03 [1/3] Resolving compiler versions...
    00:00.04       contracts/Token.sol -> 0.8.2
    00:01.57 [2/3] Compiling 4 source unit(s) with 2 compiler version(s)...

Library diagnostics go through ``logging`` instead; this module is only for
what a person watching the build should see.
"""

import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Optional, TextIO

DETAIL_INDENT = 6


@dataclass
class _ConsoleState:
    stream: TextIO = field(default_factory=lambda: sys.stdout)
    started: Optional[float] = None
    verbose: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock)


_state = _ConsoleState()


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """Restart the elapsed-time clock, optionally redirecting output."""
    _state.started = time.monotonic()
    if output_stream is not None:
        _state.stream = output_stream


def current_stream() -> TextIO:
    return _state.stream


def set_verbose(verbose: bool) -> None:
    _state.verbose = verbose


def is_verbose() -> bool:
    return _state.verbose


def get_elapsed() -> float:
    if _state.started is None:
        init_timer()
    return time.monotonic() - _state.started  # type: ignore[operator]


def format_timestamp(elapsed: Optional[float] = None) -> str:
    """Render seconds as MM:SS.cc (defaults to the current elapsed time)."""
    if elapsed is None:
        elapsed = get_elapsed()
    minutes, seconds = divmod(elapsed, 60)
    return f"{int(minutes):02d}:{seconds:05.2f}"


def _emit(text: str, verbose_only: bool = False) -> None:
    if verbose_only and not _state.verbose:
        return
    stamped = f"{format_timestamp()} {text}\n"
    # Pipeline workers log concurrently.
    with _state.lock:
        _state.stream.write(stamped)
        _state.stream.flush()


def log(message: str, verbose_only: bool = False) -> None:
    _emit(message, verbose_only)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """Log ``[phase/total] message``."""
    _emit(f"[{phase}/{total}] {message}", verbose_only)


def log_detail(message: str, indent: int = DETAIL_INDENT, verbose_only: bool = False) -> None:
    _emit(" " * indent + message, verbose_only)


def log_unit(version: str, identifier: str, cached: bool = False, verbose_only: bool = True) -> None:
    """Log one built unit: ``[0.8.2] contracts/Token.sol (cached)``."""
    marker = " (cached)" if cached else ""
    log_detail(f"[{version}] {identifier}{marker}", verbose_only=verbose_only)


def log_header(title: str, version: str) -> None:
    _emit(f"{title} v{version}")


def log_build_complete(build_time: float, verbose_only: bool = False) -> None:
    _emit(f"Build time: {build_time:.2f}s", verbose_only)


def log_error(message: str) -> None:
    _emit(f"ERROR: {message}")


def log_warning(message: str) -> None:
    _emit(f"WARNING: {message}")


class TimedStep:
    """Handle yielded by timed_step(); detail lines share the step's verbosity."""

    def __init__(self, verbose_only: bool) -> None:
        self.verbose_only = verbose_only
        self.started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def detail(self, message: str) -> None:
        log_detail(message, verbose_only=self.verbose_only)


@contextmanager
def timed_step(operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False) -> Iterator[TimedStep]:
    """Announce an operation and log ``Done (N.NNs)`` when it finishes cleanly.

    Usage:
        with timed_step("Running post-processors", phase=(3, 3)) as step:
            step.detail("typechain: succeeded")
    """
    if phase is not None:
        log_phase(phase[0], phase[1], f"{operation}...", verbose_only)
    else:
        log(f"{operation}...", verbose_only)
    step = TimedStep(verbose_only)
    yield step
    step.detail(f"Done ({step.elapsed:.2f}s)")
