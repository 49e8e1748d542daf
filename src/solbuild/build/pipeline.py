"""Parallel build pipeline.

Compiles resolved source units with one compiler invocation per version
group:
1. Group assignments by compiler version (never mixing versions in a batch)
2. Reuse cached artifacts for units whose inputs are unchanged
3. Submit the remaining groups to a bounded thread pool
4. Commit each group's artifacts atomically as soon as it completes
5. Support cancellation, leaving only fully committed artifacts on disk

A source-level error fails only the unit it belongs to (and units importing
it); the rest of the group is recompiled without it. A tool-level failure
(missing binary, crash, unreadable output) fails the whole group.
"""

from __future__ import annotations

import logging
import os
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable

from ..cancellation import CancellationToken
from ..compilers.models import CompileRequest, Diagnostic
from ..compilers.registry import CompilerProfile
from ..compilers.resolver import VersionAssignment, group_by_version
from ..compilers.solc import CompilerBackend
from ..compilers.sources import SourceTree
from ..errors import BuildCancelledError, BuildFailedError, CompilationError, CompilerInvocationError
from .artifact_set import ArtifactSet
from .artifacts import ArtifactStore
from .cache import BuildCache
from .callbacks import NullCallback, ProgressCallback
from .models import BuildArtifact, GroupPhase

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


def default_max_workers() -> int:
    return os.cpu_count() or 1


@dataclass
class GroupResult:
    """Outcome of compiling one version group in a worker thread."""

    version: str
    artifacts: list[BuildArtifact] = field(default_factory=list)
    failures: dict[str, list[Diagnostic]] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Result of one pipeline run.

    Attributes:
        artifacts: Artifacts of every unit that compiled or was reused
        errors: One CompilationError per failed unit, sorted by unit
        compiled: Identifiers compiled in this run
        cached: Identifiers reused from the incremental cache
        pending: Identifiers never completed because the run was cancelled
        cancelled: Whether the run was cancelled
        elapsed: Wall-clock seconds
    """

    artifacts: ArtifactSet
    errors: list[CompilationError] = field(default_factory=list)
    compiled: list[str] = field(default_factory=list)
    cached: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    cancelled: bool = False
    elapsed: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors and not self.cancelled

    @property
    def failed_units(self) -> list[str]:
        return [e.unit for e in self.errors]

    def raise_for_errors(self) -> None:
        """Raise BuildFailedError aggregating every CompilationError."""
        if self.errors:
            raise BuildFailedError(self.errors)


class BuildPipeline:
    """Compiles version groups concurrently through a CompilerBackend.

    Args:
        backend: Compiler backend (SolcBackend in production, fakes in tests).
        tree: Source tree used to read each batch's import closure.
        store: Artifact store; None keeps artifacts in memory only.
        cache: Incremental cache; None (or force=True) compiles everything.
        max_workers: Upper bound on concurrent compiler invocations.
        remappings: Import remappings passed to every invocation.
        force: Ignore the incremental cache.
    """

    def __init__(
        self,
        backend: CompilerBackend,
        tree: SourceTree,
        store: ArtifactStore | None = None,
        cache: BuildCache | None = None,
        max_workers: int | None = None,
        remappings: Iterable[str] = (),
        force: bool = False,
    ) -> None:
        self._backend = backend
        self._tree = tree
        self._store = store
        self._cache = cache
        self._max_workers = max_workers or default_max_workers()
        self._remappings = tuple(remappings)
        self._force = force
        self._token = CancellationToken()

    def cancel(self, reason: str = "Build cancelled") -> None:
        """Request cancellation of the running build. Thread-safe."""
        self._token.cancel(reason)

    def run(
        self,
        assignments: list[VersionAssignment],
        callback: ProgressCallback | None = None,
        token: CancellationToken | None = None,
    ) -> PipelineResult:
        """Compile every assignment.

        Args:
            assignments: Resolved assignments (one per source unit).
            callback: Progress callback for the live display.
            token: Cancellation token shared with the caller.

        Returns:
            PipelineResult; ``cancelled`` is set instead of raising when the
            token is cancelled.

        Raises:
            KeyboardInterrupt: After cancelling in-flight work on Ctrl-C.
        """
        start_time = time.monotonic()
        callback = callback or NullCallback()
        if token is not None:
            self._token = token
        token = self._token

        result = PipelineResult(artifacts=ArtifactSet())
        groups = group_by_version(assignments)
        to_compile: dict[str, list[VersionAssignment]] = {}

        for version, group in groups.items():
            remaining = self._reuse_cached(group, result)
            total = len(group)
            if remaining:
                to_compile[version] = remaining
                cached = total - len(remaining)
                detail = f"{cached} cached, {len(remaining)} to compile" if cached else f"{total} to compile"
                callback.on_progress(version, GroupPhase.WAITING, cached, total, detail)
            else:
                callback.on_progress(version, GroupPhase.DONE, total, total, "Up to date")

        if to_compile:
            self._compile_groups(to_compile, groups, result, callback, token)

        if self._cache is not None:
            self._cache.save()

        result.errors.sort(key=lambda e: e.unit)
        result.compiled.sort()
        result.cached.sort()
        result.pending.sort()
        result.elapsed = time.monotonic() - start_time
        return result

    def _reuse_cached(self, group: list[VersionAssignment], result: PipelineResult) -> list[VersionAssignment]:
        """Add fresh cached artifacts to the result; return assignments still to compile."""
        if self._force or self._cache is None or self._store is None:
            return list(group)
        remaining: list[VersionAssignment] = []
        for assignment in group:
            closure_hash = self._tree.closure_hash(assignment.identifier)
            names = self._cache.lookup(assignment.identifier, closure_hash, assignment.profile)
            artifact = None
            if names is not None:
                artifact = self._store.load(assignment.source_unit, assignment.version, names)
            if artifact is None:
                remaining.append(assignment)
                continue
            logger.debug("Up to date: %s (solc %s)", assignment.identifier, assignment.version)
            result.artifacts.add(artifact)
            result.cached.append(assignment.identifier)
        return remaining

    def _compile_groups(
        self,
        to_compile: dict[str, list[VersionAssignment]],
        groups: dict[str, list[VersionAssignment]],
        result: PipelineResult,
        callback: ProgressCallback,
        token: CancellationToken,
    ) -> None:
        active_futures: dict[Future[GroupResult], str] = {}
        workers = max(1, min(self._max_workers, len(to_compile)))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="solc") as executor:
            try:
                for version, group in to_compile.items():
                    callback.on_progress(version, GroupPhase.COMPILING, 0, len(groups[version]), "Queued for compilation")
                    future = executor.submit(self._compile_group, group[0].profile, group, token)
                    active_futures[future] = version

                while active_futures:
                    if token.is_cancelled:
                        self._handle_cancellation(active_futures, to_compile, result, callback)
                        break
                    done, _ = wait(list(active_futures), timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                    for future in sorted(done, key=lambda f: active_futures[f]):
                        version = active_futures.pop(future)
                        self._process_completed(future, version, to_compile[version], groups[version], result, callback)

            except KeyboardInterrupt:
                token.cancel("Interrupted by user")
                self._handle_cancellation(active_futures, to_compile, result, callback)
                raise

    def _process_completed(
        self,
        future: Future[GroupResult],
        version: str,
        compiled: list[VersionAssignment],
        group: list[VersionAssignment],
        result: PipelineResult,
        callback: ProgressCallback,
    ) -> None:
        """Commit a finished group's artifacts and record its failures."""
        try:
            group_result = future.result()
        except BuildCancelledError:
            result.pending.extend(a.identifier for a in compiled)
            result.cancelled = True
            callback.on_progress(version, GroupPhase.CANCELLED, 0, len(group), "Cancelled")
            return
        except CompilerInvocationError as e:
            logger.error("solc %s failed: %s", version, e)
            group_result = GroupResult(version, failures={a.identifier: [Diagnostic.tool_failure(str(e))] for a in compiled})
        except Exception as e:
            logger.exception("Unexpected error compiling solc %s group", version)
            group_result = GroupResult(version, failures={a.identifier: [Diagnostic.tool_failure(str(e))] for a in compiled})

        by_id = {a.identifier: a for a in compiled}
        for artifact in group_result.artifacts:
            if self._store is not None:
                self._store.write(artifact)
            if self._cache is not None:
                assignment = by_id[artifact.identifier]
                closure_hash = self._tree.closure_hash(artifact.identifier)
                self._cache.update(artifact.identifier, closure_hash, assignment.profile, artifact.contract_names)
            result.artifacts.add(artifact)
            result.compiled.append(artifact.identifier)

        for identifier, diagnostics in sorted(group_result.failures.items()):
            if self._cache is not None:
                self._cache.invalidate(identifier)
            result.errors.append(CompilationError(identifier, diagnostics))

        total = len(group)
        finished = total - len(group_result.failures)
        if group_result.failures:
            detail = f"{len(group_result.failures)} of {len(compiled)} unit(s) failed"
            callback.on_progress(version, GroupPhase.FAILED, finished, total, detail)
        else:
            callback.on_progress(version, GroupPhase.DONE, total, total, f"{len(group_result.artifacts)} compiled")

    def _handle_cancellation(
        self,
        active_futures: dict[Future[GroupResult], str],
        to_compile: dict[str, list[VersionAssignment]],
        result: PipelineResult,
        callback: ProgressCallback,
    ) -> None:
        """Drain in-flight groups after cancellation.

        Groups that already produced a complete result are still committed;
        everything else is reported as pending and partial files are removed.
        """
        result.cancelled = True
        for future in active_futures:
            future.cancel()
        for future, version in sorted(active_futures.items(), key=lambda item: item[1]):
            if future.cancelled():
                result.pending.extend(a.identifier for a in to_compile[version])
                callback.on_progress(version, GroupPhase.CANCELLED, 0, len(to_compile[version]), "Cancelled")
                continue
            # Killed compiler processes make running workers return promptly.
            wait([future])
            if future.exception() is None:
                self._process_completed(future, version, to_compile[version], to_compile[version], result, callback)
            else:
                result.pending.extend(a.identifier for a in to_compile[version])
                callback.on_progress(version, GroupPhase.CANCELLED, 0, len(to_compile[version]), "Cancelled")
        active_futures.clear()
        if self._store is not None:
            removed = self._store.discard_partial()
            if removed:
                logger.debug("Removed %d partial artifact file(s)", removed)

    def _compile_group(
        self,
        profile: CompilerProfile,
        group: list[VersionAssignment],
        token: CancellationToken,
    ) -> GroupResult:
        """Compile one version group, dropping failed units until the batch is clean.

        Runs in a worker thread. Never touches the artifact store.
        """
        result = GroupResult(profile.version)
        by_id = {a.identifier: a for a in group}
        closures = {ident: set(self._tree.closure([ident])) for ident in by_id}
        remaining = sorted(by_id)

        while remaining:
            token.raise_if_cancelled()
            missing = [ident for ident in remaining if ident not in closures[ident]]
            for ident in missing:
                result.failures[ident] = [Diagnostic.tool_failure(f"Source not found: {ident}")]
            remaining = [ident for ident in remaining if ident not in result.failures]
            if not remaining:
                break

            request = CompileRequest(
                profile=profile,
                targets=tuple(remaining),
                sources=self._tree.closure(remaining),
                remappings=self._remappings,
            )
            output = self._backend.compile(request, token)
            errors = output.errors

            if not errors:
                for ident in remaining:
                    result.artifacts.append(
                        BuildArtifact(
                            source_unit=by_id[ident].source_unit,
                            profile_version=profile.version,
                            contracts=tuple(sorted(output.contracts.get(ident, []), key=lambda c: c.name)),
                            diagnostics=tuple(output.diagnostics_for(ident)),
                        )
                    )
                break

            newly_failed: dict[str, list[Diagnostic]] = {}
            for error in errors:
                if error.source in remaining:
                    affected = [error.source]
                elif error.source is not None:
                    affected = [ident for ident in remaining if error.source in closures[ident]]
                else:
                    affected = []
                # Errors that cannot be attributed fail the whole remaining batch.
                for ident in affected or remaining:
                    newly_failed.setdefault(ident, []).append(error)

            for ident, diagnostics in newly_failed.items():
                logger.debug("solc %s: %s failed with %d error(s)", profile.version, ident, len(diagnostics))
                result.failures[ident] = diagnostics
            remaining = [ident for ident in remaining if ident not in newly_failed]
            if remaining:
                logger.debug("solc %s: recompiling %d remaining unit(s)", profile.version, len(remaining))

        return result
