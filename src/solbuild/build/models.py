"""Data models for a build invocation.

Defines:
- BuildStatus: state machine of one invocation
- GroupPhase: progress phase of a compiler version group
- BuildArtifact: compiled output of one source unit
- UnitOutcome / UnitResult: per-unit entry in the final report
- ProcessorStatus / ProcessorOutput / ProcessorResult: post-processor outcomes
- BuildReport: the single structured report returned at the end
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from ..compilers.models import ContractArtifact, Diagnostic
from ..compilers.resolver import SourceUnit


class BuildStatus(Enum):
    """State of a build invocation.

    PENDING -> RESOLVING -> COMPILING -> POST_PROCESSING -> COMPLETED, with
    FAILED reachable from RESOLVING or COMPILING and CANCELLED as a separate
    terminal state.
    """

    PENDING = "pending"
    RESOLVING = "resolving"
    COMPILING = "compiling"
    POST_PROCESSING = "post_processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GroupPhase(Enum):
    """Phase of one compiler version group in the pipeline."""

    WAITING = "waiting"
    COMPILING = "compiling"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class BuildArtifact:
    """Compiled output for one source unit.

    Attributes:
        source_unit: The unit this artifact was built from
        profile_version: Compiler version that built it
        contracts: Contracts defined in the unit, sorted by name
        diagnostics: Non-fatal diagnostics (warnings) for the unit
    """

    source_unit: SourceUnit
    profile_version: str
    contracts: tuple[ContractArtifact, ...] = ()
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def identifier(self) -> str:
        return self.source_unit.identifier

    def contract(self, name: str) -> ContractArtifact:
        for contract in self.contracts:
            if contract.name == name:
                return contract
        raise KeyError(f"{self.identifier} has no contract named {name}")

    @property
    def contract_names(self) -> list[str]:
        return [c.name for c in self.contracts]


class UnitOutcome(Enum):
    COMPILED = "compiled"
    CACHED = "cached"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class UnitResult:
    """Report entry for one source unit."""

    identifier: str
    version: str
    outcome: UnitOutcome
    contracts: list[str] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "version": self.version,
            "outcome": self.outcome.value,
            "contracts": list(self.contracts),
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


class ProcessorStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProcessorOutput:
    """What a post-processor produced.

    Attributes:
        processor: Processor name
        location: Output location the processor wrote to
        files: Files written or rewritten, sorted
        detail: Short human-readable summary
    """

    processor: str
    location: Path
    files: tuple[Path, ...] = ()
    detail: str = ""


@dataclass
class ProcessorResult:
    """Report entry for one post-processor."""

    name: str
    status: ProcessorStatus
    output: ProcessorOutput | None = None
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "location": str(self.output.location) if self.output else None,
            "files": [str(f) for f in self.output.files] if self.output else [],
            "detail": self.output.detail if self.output else "",
            "error": self.error,
        }


@dataclass
class BuildReport:
    """Single structured report for one build invocation.

    Attributes:
        status: Terminal build status
        units: One entry per source unit, sorted by identifier
        processors: One entry per post-processor considered
        elapsed: Wall-clock seconds for the invocation
        warnings: Orchestrator-level warnings
        gas_rows: Gas report rows (empty when the reporter is disabled)
    """

    status: BuildStatus
    units: list[UnitResult] = field(default_factory=list)
    processors: list[ProcessorResult] = field(default_factory=list)
    elapsed: float = 0.0
    warnings: list[str] = field(default_factory=list)
    gas_rows: list[dict[str, Any]] = field(default_factory=list)

    def _units_with(self, *outcomes: UnitOutcome) -> list[UnitResult]:
        return [u for u in self.units if u.outcome in outcomes]

    @property
    def succeeded(self) -> list[UnitResult]:
        return self._units_with(UnitOutcome.COMPILED, UnitOutcome.CACHED)

    @property
    def failed(self) -> list[UnitResult]:
        return self._units_with(UnitOutcome.FAILED)

    @property
    def skipped(self) -> list[UnitResult]:
        return self._units_with(UnitOutcome.SKIPPED)

    @property
    def failed_processors(self) -> list[ProcessorResult]:
        return [p for p in self.processors if p.status == ProcessorStatus.FAILED]

    @property
    def diagnostics(self) -> list[Diagnostic]:
        return [d for u in self.units for d in u.diagnostics]

    @property
    def error_count(self) -> int:
        return sum(1 for d in self.diagnostics if d.is_error)

    @property
    def ok(self) -> bool:
        """Completed with no failed unit and no failed processor."""
        return self.status == BuildStatus.COMPLETED and not self.failed and not self.failed_processors

    def unit(self, identifier: str) -> UnitResult:
        for unit in self.units:
            if unit.identifier == identifier:
                return unit
        raise KeyError(f"No report entry for {identifier}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "elapsed": self.elapsed,
            "units": [u.to_dict() for u in self.units],
            "processors": [p.to_dict() for p in self.processors],
            "warnings": list(self.warnings),
            "gas": list(self.gas_rows),
        }

    def format_summary(self) -> str:
        """One-line summary, e.g. ``completed: 3 compiled, 1 cached, 1 failed``."""
        compiled = len(self._units_with(UnitOutcome.COMPILED))
        cached = len(self._units_with(UnitOutcome.CACHED))
        parts = [f"{compiled} compiled"]
        if cached:
            parts.append(f"{cached} cached")
        if self.failed:
            parts.append(f"{len(self.failed)} failed")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.failed_processors:
            parts.append(f"{len(self.failed_processors)} post-processor(s) failed")
        return f"{self.status.value}: {', '.join(parts)}"
