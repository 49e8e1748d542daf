"""Rich-based live progress display for the build pipeline.

Renders one line per compiler version group:

    solc 0.6.6   Waiting
    solc 0.8.2   Compiling  ⠹ Queued for compilation
    solc 0.7.6   Done       ✓ 4 compiled  1.2s
    solc 0.8.0   Failed     ✗ 1 of 3 unit(s) failed

Thread-safe: the pipeline may call on_progress() from any thread while the
display renders in the main thread.
"""

import threading
import time
from typing import Any

from rich.console import Console, Group
from rich.live import Live
from rich.table import Table
from rich.text import Text

from .models import GroupPhase

# Braille spinner frames for the COMPILING phase animation
_SPINNER_FRAMES = ("⠋", "⠙", "⠹", "⠸", "⠼", "⠴", "⠦", "⠧", "⠇", "⠏")

_PHASE_LABELS = {
    GroupPhase.WAITING: ("Waiting", "dim"),
    GroupPhase.COMPILING: ("Compiling", "magenta"),
    GroupPhase.DONE: ("Done", "green"),
    GroupPhase.FAILED: ("Failed", "red bold"),
    GroupPhase.CANCELLED: ("Cancelled", "yellow"),
}


class _GroupDisplayState:
    """Display state of one version group."""

    __slots__ = ("version", "phase", "progress", "total", "detail", "elapsed", "start_time")

    def __init__(self, version: str) -> None:
        self.version = version
        self.phase = GroupPhase.WAITING
        self.progress: float = 0.0
        self.total: float = 0.0
        self.detail: str = ""
        self.elapsed: float = 0.0
        self.start_time: float | None = None


class BuildProgressDisplay:
    """Live table of version groups; implements ProgressCallback.

    Args:
        console: Rich Console for rendering. If None, creates a new one.
        project_name: Shown in the header line.
        refresh_per_second: Display refresh rate.
    """

    def __init__(self, console: Console | None, project_name: str, refresh_per_second: int = 10) -> None:
        self._console = console if console is not None else Console()
        self._project_name = project_name
        self._refresh_per_second = refresh_per_second
        self._states: dict[str, _GroupDisplayState] = {}
        self._order: list[str] = []
        self._lock = threading.Lock()
        self._live: Live | None = None

    def on_progress(self, group: str, phase: GroupPhase, progress: float, total: float, detail: str) -> None:
        with self._lock:
            state = self._states.get(group)
            if state is None:
                state = _GroupDisplayState(group)
                self._states[group] = state
                self._order.append(group)

            if state.start_time is None and phase != GroupPhase.WAITING:
                state.start_time = time.monotonic()

            state.phase = phase
            state.progress = progress
            state.total = total
            state.detail = detail
            if state.start_time is not None:
                state.elapsed = time.monotonic() - state.start_time

        if self._live is not None:
            self._live.update(self._render_display())

    def start(self) -> None:
        self._live = Live(
            self._render_display(),
            console=self._console,
            refresh_per_second=self._refresh_per_second,
            transient=False,
        )
        self._live.start()

    def stop(self) -> None:
        if self._live is not None:
            self._live.update(self._render_display())
            self._live.stop()
            self._live = None

    def _render_display(self) -> Group:
        header = Text(f"\nCompiling {self._project_name}...\n", style="bold")
        return Group(header, self._render_table(), self._render_footer())

    def _render_table(self) -> Table:
        table = Table(show_header=False, show_edge=False, show_lines=False, box=None, padding=(0, 1), expand=False)
        table.add_column("Group", style="bold", no_wrap=True, min_width=14)
        table.add_column("Phase", no_wrap=True, min_width=10)
        table.add_column("Status", no_wrap=True, min_width=40)

        with self._lock:
            for version in self._order:
                state = self._states[version]
                label, style = _PHASE_LABELS.get(state.phase, ("Unknown", "dim"))
                table.add_row(Text(f"solc {state.version}"), Text(label, style=style), self._format_status(state))
        return table

    def _render_footer(self) -> Text:
        with self._lock:
            total = len(self._states)
            done = sum(1 for s in self._states.values() if s.phase == GroupPhase.DONE)
            failed = sum(1 for s in self._states.values() if s.phase == GroupPhase.FAILED)
            active = sum(1 for s in self._states.values() if s.phase == GroupPhase.COMPILING)

        parts = [f"{total} compiler version(s)"]
        if active:
            parts.append(f"{active} active")
        if done:
            parts.append(f"{done} done")
        if failed:
            parts.append(f"{failed} with failures")
        return Text(f"\n  {', '.join(parts)}", style="dim")

    def _format_status(self, state: _GroupDisplayState) -> Text:
        if state.phase == GroupPhase.WAITING:
            return Text(state.detail, style="dim")
        if state.phase == GroupPhase.COMPILING:
            spinner = _SPINNER_FRAMES[int(time.monotonic() * 8) % len(_SPINNER_FRAMES)]
            return Text(f"{spinner} {state.detail or 'Compiling...'}", style="magenta")
        if state.phase == GroupPhase.DONE:
            elapsed = f"  {state.elapsed:.1f}s" if state.elapsed > 0 else ""
            return Text(f"✓ {state.detail}{elapsed}", style="green")
        if state.phase == GroupPhase.FAILED:
            return Text(f"✗ {state.detail or 'Error'}", style="red")
        return Text(state.detail, style="yellow")

    def get_snapshot(self) -> list[dict[str, Any]]:
        """Current display states, for tests."""
        with self._lock:
            return [
                {
                    "version": s.version,
                    "phase": s.phase,
                    "progress": s.progress,
                    "total": s.total,
                    "detail": s.detail,
                }
                for s in (self._states[v] for v in self._order)
            ]

    def __enter__(self) -> "BuildProgressDisplay":
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()
