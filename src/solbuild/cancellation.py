"""Cooperative cancellation for build invocations.

A CancellationToken is shared by the orchestrator, the build pipeline and
every compiler backend call of one invocation. Cancelling it terminates the
registered compiler processes (including their children) and makes every
subsequent raise_if_cancelled() raise BuildCancelledError.
"""

import logging
import subprocess
import threading

from .errors import BuildCancelledError
from .subprocess_utils import kill_process_tree

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with process tracking."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._processes: dict[int, subprocess.Popen] = {}
        self._reason = ""

    def cancel(self, reason: str = "Build cancelled") -> None:
        """Request cancellation and terminate in-flight compiler processes."""
        with self._lock:
            if self._event.is_set():
                return
            self._reason = reason
            self._event.set()
            processes = list(self._processes.values())

        for proc in processes:
            if proc.poll() is None:
                logger.debug("Terminating compiler process %d", proc.pid)
                kill_process_tree(proc.pid)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise BuildCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise BuildCancelledError(self._reason or "Build cancelled")

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def register_process(self, proc: subprocess.Popen) -> None:
        """Track a compiler process so cancel() can terminate it.

        A process registered after cancellation is terminated immediately.
        """
        with self._lock:
            self._processes[proc.pid] = proc
            cancelled = self._event.is_set()
        if cancelled and proc.poll() is None:
            kill_process_tree(proc.pid)

    def unregister_process(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._processes.pop(proc.pid, None)

    @property
    def active_process_count(self) -> int:
        with self._lock:
            return len(self._processes)
