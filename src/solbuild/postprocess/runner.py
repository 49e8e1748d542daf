"""Post-processor scheduling.

Processors run in ascending ``order``. Processors sharing an order value are
independent and run concurrently; each holds the lock of its output location
while writing, so two processors never write the same location at once. A
failing processor is recorded and never stops the others.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from itertools import groupby
from pathlib import Path
from typing import Iterable

from ..build.models import ProcessorResult, ProcessorStatus
from ..errors import PostProcessorError
from .base import PostProcessor, ProcessorContext

logger = logging.getLogger(__name__)


class PostProcessorRunner:
    """Runs post-processors with order-based sequencing and error isolation.

    Args:
        max_workers: Upper bound on processors running concurrently.
    """

    def __init__(self, max_workers: int = 4) -> None:
        self._max_workers = max(1, max_workers)
        self._locks: dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, location: Path) -> threading.Lock:
        key = Path(location).resolve()
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def select(self, processors: Iterable[PostProcessor], names: Iterable[str] | None = None) -> tuple[list[PostProcessor], list[PostProcessor]]:
        """Split processors into (scheduled, skipped).

        With ``names`` given, exactly the named processors are scheduled,
        regardless of ``run_on_build``.

        Raises:
            ValueError: If a requested name matches no processor.
        """
        processors = list(processors)
        if names is not None:
            wanted = set(names)
            unknown = wanted - {p.name for p in processors}
            if unknown:
                raise ValueError(f"Unknown post-processor(s): {', '.join(sorted(unknown))}")
            scheduled = [p for p in processors if p.name in wanted]
        else:
            scheduled = [p for p in processors if p.run_on_build]
        skipped = [p for p in processors if p not in scheduled]
        scheduled.sort(key=lambda p: (p.order, p.name))
        return scheduled, skipped

    def run(self, processors: Iterable[PostProcessor], context: ProcessorContext, names: Iterable[str] | None = None) -> list[ProcessorResult]:
        """Run the scheduled processors.

        Returns:
            One ProcessorResult per processor, in execution order, followed
            by the skipped ones.
        """
        scheduled, skipped = self.select(processors, names)
        results = self.run_scheduled(scheduled, context)
        results.extend(self.skipped_results(skipped))
        return results

    @staticmethod
    def skipped_results(skipped: Iterable[PostProcessor]) -> list[ProcessorResult]:
        return [ProcessorResult(p.name, ProcessorStatus.SKIPPED) for p in sorted(skipped, key=lambda p: (p.order, p.name))]

    def run_scheduled(self, scheduled: Iterable[PostProcessor], context: ProcessorContext) -> list[ProcessorResult]:
        """Run already-selected processors, batch by batch in ascending order."""
        scheduled = sorted(scheduled, key=lambda p: (p.order, p.name))
        results: list[ProcessorResult] = []

        for order, batch_iter in groupby(scheduled, key=lambda p: p.order):
            batch = list(batch_iter)
            if context.token.is_cancelled:
                results.extend(ProcessorResult(p.name, ProcessorStatus.SKIPPED, error="cancelled") for p in batch)
                continue
            logger.debug("Running post-processor(s) with order %d: %s", order, ", ".join(p.name for p in batch))
            if len(batch) == 1:
                results.append(self._run_one(batch[0], context))
            else:
                with ThreadPoolExecutor(max_workers=min(self._max_workers, len(batch)), thread_name_prefix="postprocess") as pool:
                    results.extend(pool.map(lambda p: self._run_one(p, context), batch))
        return results

    def _run_one(self, processor: PostProcessor, context: ProcessorContext) -> ProcessorResult:
        try:
            with self._lock_for(processor.output_location):
                output = processor.run(context)
        except Exception as e:
            error = PostProcessorError(processor.name, e)
            logger.error("%s", error)
            logger.debug("Post-processor traceback", exc_info=True)
            return ProcessorResult(processor.name, ProcessorStatus.FAILED, error=str(error))
        context.artifacts.add_output(output)
        logger.debug("Post-processor %s: %s", processor.name, output.detail)
        return ProcessorResult(processor.name, ProcessorStatus.SUCCEEDED, output=output)
