"""Progress callback protocol for the build pipeline.

Defines the callback interface the pipeline uses to report per-version-group
progress to the live display layer.
"""

from typing import Protocol, runtime_checkable

from .models import GroupPhase


@runtime_checkable
class ProgressCallback(Protocol):
    """Protocol for receiving progress updates from the build pipeline.

    One "group" is all source units assigned to the same compiler version.
    The Rich display implements this protocol to render one row per group.
    """

    def on_progress(self, group: str, phase: GroupPhase, progress: float, total: float, detail: str) -> None:
        """Called when a version group changes phase or makes progress.

        Args:
            group: Compiler version of the group (e.g. "0.8.2").
            phase: Current group phase.
            progress: Units finished so far.
            total: Units in the group.
            detail: Human-readable status detail (e.g. "2 cached, 3 to compile").
        """
        ...


class NullCallback:
    """No-op callback for tests and non-interactive use."""

    def on_progress(self, group: str, phase: GroupPhase, progress: float, total: float, detail: str) -> None:
        pass
