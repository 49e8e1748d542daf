"""
Build orchestration for solbuild projects.

A BuildOrchestrator drives each build invocation through

    PENDING -> RESOLVING -> COMPILING -> POST_PROCESSING -> COMPLETED

with FAILED reachable from resolution or compilation and CANCELLED as a
separate terminal state. Resolution errors abort the build before any
compiler runs; compilation errors are collected per unit; post-processor
errors are isolated per processor.

Every invocation reads sources afresh and gets its own cancellation token
and gas figures. Processors that rewrite sources (SPDX stamping) run before
compilation so the build cache keys on the rewritten text.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Iterable

from ..cancellation import CancellationToken
from ..compilers.registry import CompilerRegistry
from ..compilers.resolver import SourceUnit, VersionAssignment, resolve
from ..compilers.solc import CompilerBackend, SolcBackend
from ..compilers.sources import SourceTree, discover_sources
from ..config.project_config import ProjectConfig
from ..errors import IncompatibleSettingsError, SolbuildError
from ..networks import NetworkRegistry
from ..output import log_detail, log_phase, log_unit, log_warning, timed_step
from ..postprocess import PostProcessor, PostProcessorRunner, ProcessorContext, build_processors
from ..reporting import GasReporter
from .artifact_set import ArtifactSet
from .artifacts import ArtifactStore
from .cache import BuildCache
from .callbacks import ProgressCallback
from .models import BuildReport, BuildStatus, ProcessorResult, ProcessorStatus, UnitOutcome, UnitResult
from .pipeline import BuildPipeline, PipelineResult

logger = logging.getLogger(__name__)

COVERAGE_PROCESSOR = "coverage"


class BuildOrchestrator:
    """
    Drives one project build from source discovery to the final report.

    Args:
        config: Validated project configuration
        backend: Compiler backend (defaults to SolcBackend)
        registry: Compiler registry (defaults to the configured one)
        networks: Network registry (defaults to the configured one)
        processors: Post-processors (defaults to the built-in four)
        gas_reporter: Gas reporting sink (defaults to the configured one)
    """

    def __init__(
        self,
        config: ProjectConfig,
        backend: CompilerBackend | None = None,
        registry: CompilerRegistry | None = None,
        networks: NetworkRegistry | None = None,
        processors: list[PostProcessor] | None = None,
        gas_reporter: GasReporter | None = None,
    ) -> None:
        self.config = config
        self.backend = backend if backend is not None else SolcBackend()
        self.registry = registry if registry is not None else config.compiler_registry()
        self.networks = networks if networks is not None else config.network_registry()
        self.processors = processors if processors is not None else build_processors(config)
        self.gas_reporter = gas_reporter if gas_reporter is not None else GasReporter(config.gas_reporter, self.networks.default())
        self.tree = self._new_tree()
        self.store = ArtifactStore(config.paths.artifacts_dir)
        self.cache = BuildCache(config.paths.cache_dir)
        self.token = CancellationToken()
        self._status = BuildStatus.PENDING
        self._status_lock = threading.Lock()

    def _new_tree(self) -> SourceTree:
        return SourceTree(
            root=self.config.root,
            library_dirs=self.config.paths.library_dirs,
            remappings=self.config.solidity.remappings,
        )

    @property
    def status(self) -> BuildStatus:
        with self._status_lock:
            return self._status

    def _set_status(self, status: BuildStatus) -> None:
        with self._status_lock:
            logger.debug("Build status %s -> %s", self._status.value, status.value)
            self._status = status

    def cancel(self, reason: str = "Build cancelled") -> None:
        """Cancel the running build from any thread.

        A cancel issued between builds applies to the next one; each build
        leaves a fresh token behind.
        """
        self.token.cancel(reason)

    def discover(self) -> list[SourceUnit]:
        """Scan the sources directory for source units.

        Raises:
            ConfigError: If the sources directory is missing.
        """
        self.tree = self._new_tree()
        return discover_sources(self.tree, self.config.paths.sources, self.config.solidity.overrides)

    def resolve(self, units: Iterable[SourceUnit] | None = None) -> list[VersionAssignment]:
        """Resolve every unit to a compiler profile (no compiler is invoked)."""
        units = list(units) if units is not None else self.discover()
        return resolve(units, self.registry)

    def check_settings(self, assignments: list[VersionAssignment], scheduled: list[PostProcessor]) -> None:
        """Reject setting combinations that cannot produce meaningful output.

        Raises:
            IncompatibleSettingsError: If coverage instrumentation is scheduled
                while an assigned profile has the optimizer enabled.
        """
        if not any(p.name == COVERAGE_PROCESSOR for p in scheduled):
            return
        optimized = sorted({a.version for a in assignments if a.profile.optimizer_enabled})
        if optimized:
            raise IncompatibleSettingsError(
                f"Coverage instrumentation requires the optimizer to be disabled; "
                f"enabled for solc {', '.join(optimized)}"
            )

    def build(
        self,
        units: Iterable[SourceUnit] | None = None,
        force: bool = False,
        run_post_processors: bool = True,
        processor_names: Iterable[str] | None = None,
        callback: ProgressCallback | None = None,
    ) -> BuildReport:
        """
        Execute one build invocation.

        Args:
            units: Source units to build (defaults to everything discovered)
            force: Ignore the incremental cache
            run_post_processors: Run post-processors after compilation
            processor_names: Run exactly these post-processors instead of
                the ones flagged run-on-build
            callback: Progress callback for the live display

        Returns:
            BuildReport with a terminal status

        Raises:
            SolbuildError: Resolution and settings errors (status is FAILED)
        """
        self.gas_reporter.reset()
        try:
            return self._build(units, force, run_post_processors, processor_names, callback)
        finally:
            self.token = CancellationToken()

    def _build(
        self,
        units: Iterable[SourceUnit] | None,
        force: bool,
        run_post_processors: bool,
        processor_names: Iterable[str] | None,
        callback: ProgressCallback | None,
    ) -> BuildReport:
        start_time = time.monotonic()
        processor_names = list(processor_names) if processor_names is not None else None
        runner = PostProcessorRunner()
        scheduled: list[PostProcessor] = []
        skipped: list[PostProcessor] = []

        self.tree = self._new_tree()
        self._set_status(BuildStatus.RESOLVING)
        log_phase(1, 3, "Resolving compiler versions...")
        try:
            assignments = self.resolve(units)
            if run_post_processors:
                scheduled, skipped = runner.select(self.processors, processor_names)
            self.check_settings(assignments, scheduled)
        except (SolbuildError, ValueError):
            self._set_status(BuildStatus.FAILED)
            raise
        for assignment in assignments:
            log_detail(f"{assignment.identifier} -> {assignment.version}", verbose_only=True)

        if self.token.is_cancelled:
            return self._finish(BuildStatus.CANCELLED, assignments, None, [], start_time)

        processor_results = self._rewrite_sources(runner, [p for p in scheduled if p.rewrites_sources], assignments)

        self._set_status(BuildStatus.COMPILING)
        versions = sorted({a.version for a in assignments})
        log_phase(2, 3, f"Compiling {len(assignments)} source unit(s) with {len(versions)} compiler version(s)...")
        pipeline = BuildPipeline(
            backend=self.backend,
            tree=self.tree,
            store=self.store,
            cache=self.cache,
            max_workers=self.config.max_workers,
            remappings=self.config.solidity.remappings,
            force=force,
        )
        try:
            result = pipeline.run(assignments, callback=callback, token=self.token)
        except KeyboardInterrupt:
            self._set_status(BuildStatus.CANCELLED)
            raise

        for identifier in result.compiled:
            log_unit(result.artifacts.get(identifier).profile_version, identifier)
        for identifier in result.cached:
            log_unit(result.artifacts.get(identifier).profile_version, identifier, cached=True)
        for error in result.errors:
            log_warning(str(error))

        if result.cancelled:
            return self._finish(BuildStatus.CANCELLED, assignments, result, processor_results, start_time)

        current = {a.identifier for a in assignments}
        removed = self.store.reconcile(current)
        self.cache.prune(current)
        self.cache.save()
        for identifier in removed:
            log_detail(f"Removed stale artifacts of {identifier}", verbose_only=True)

        if assignments and len(result.errors) == len(assignments):
            return self._finish(BuildStatus.FAILED, assignments, result, processor_results, start_time)

        self._record_gas(result)

        if run_post_processors:
            self._set_status(BuildStatus.POST_PROCESSING)
            context = ProcessorContext(
                config=self.config,
                artifacts=result.artifacts,
                assignments=assignments,
                token=self.token,
            )
            with timed_step("Running post-processors", phase=(3, 3)) as step:
                artifact_results = runner.run_scheduled([p for p in scheduled if not p.rewrites_sources], context)
                for processor_result in artifact_results:
                    step.detail(f"{processor_result.name}: {processor_result.status.value}")
            processor_results += artifact_results + runner.skipped_results(skipped)
            if self.token.is_cancelled:
                return self._finish(BuildStatus.CANCELLED, assignments, result, processor_results, start_time)

        return self._finish(BuildStatus.COMPLETED, assignments, result, processor_results, start_time)

    def _rewrite_sources(
        self,
        runner: PostProcessorRunner,
        processors: list[PostProcessor],
        assignments: list[VersionAssignment],
    ) -> list[ProcessorResult]:
        """Run source-rewriting processors ahead of compilation.

        The source tree is rebuilt afterwards so cache keys and compiler
        input are taken from the rewritten text.
        """
        if not processors:
            return []
        context = ProcessorContext(
            config=self.config,
            artifacts=ArtifactSet(),
            assignments=assignments,
            token=self.token,
        )
        with timed_step("Rewriting sources", verbose_only=True) as step:
            results = runner.run_scheduled(processors, context)
            for processor_result in results:
                step.detail(f"{processor_result.name}: {processor_result.status.value}")
        self.tree = self._new_tree()
        return results

    def _record_gas(self, result: PipelineResult) -> None:
        if not self.gas_reporter.enabled:
            return
        for artifact, contract in result.artifacts.contracts():
            gas = contract.creation_gas()
            if gas is not None:
                self.gas_reporter.record(f"{artifact.identifier}:{contract.name}", gas)

    def _finish(
        self,
        status: BuildStatus,
        assignments: list[VersionAssignment],
        result: PipelineResult | None,
        processor_results: list[ProcessorResult],
        start_time: float,
    ) -> BuildReport:
        self._set_status(status)
        units: list[UnitResult] = []
        errors = {e.unit: e for e in result.errors} if result else {}
        compiled = set(result.compiled) if result else set()
        cached = set(result.cached) if result else set()

        for assignment in assignments:
            identifier = assignment.identifier
            if identifier in errors:
                units.append(UnitResult(identifier, assignment.version, UnitOutcome.FAILED, diagnostics=errors[identifier].diagnostics))
            elif identifier in compiled or identifier in cached:
                artifact = result.artifacts.get(identifier)
                outcome = UnitOutcome.CACHED if identifier in cached else UnitOutcome.COMPILED
                units.append(UnitResult(identifier, assignment.version, outcome, artifact.contract_names, list(artifact.diagnostics)))
            else:
                units.append(UnitResult(identifier, assignment.version, UnitOutcome.SKIPPED))

        if status == BuildStatus.CANCELLED:
            done = {r.name for r in processor_results}
            processor_results = processor_results + [
                ProcessorResult(p.name, ProcessorStatus.SKIPPED, error="cancelled") for p in self.processors if p.name not in done
            ]

        warnings: list[str] = []
        if status == BuildStatus.CANCELLED:
            warnings.append(self.token.reason or "Build cancelled")

        return BuildReport(
            status=status,
            units=sorted(units, key=lambda u: u.identifier),
            processors=processor_results,
            elapsed=time.monotonic() - start_time,
            warnings=warnings,
            gas_rows=self.gas_reporter.rows() if status == BuildStatus.COMPLETED else [],
        )

    def clean(self) -> list[Path]:
        """Remove artifacts, cache and generated post-processor output (sources are never touched)."""
        removed: list[Path] = []
        if self.store.clean():
            removed.append(self.store.artifacts_dir)
        if self.cache.cache_file.exists():
            removed.append(self.cache.cache_file)
        self.cache.clear()
        for processor in self.processors:
            location = processor.output_location
            if processor.name == "license" or not location.exists():
                continue
            shutil.rmtree(location)
            removed.append(location)
        return removed
