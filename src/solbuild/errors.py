"""Exception hierarchy for solbuild.

Registry and resolution errors indicate configuration defects and abort a
build immediately. Compilation errors are collected per source unit and
surfaced together once every version group has finished. Post-processor
errors are scoped to a single processor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .compilers.models import Diagnostic


class SolbuildError(Exception):
    """Base class for all solbuild errors."""

    pass


class ConfigError(SolbuildError):
    """Raised when solbuild.json (or the packaged defaults) is invalid."""

    pass


class DuplicateVersionError(SolbuildError):
    """Raised when a compiler version is registered twice."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Compiler version already registered: {version}")
        self.version = version


class UnknownVersionError(SolbuildError):
    """Raised when a compiler version is not in the registry."""

    def __init__(self, version: str) -> None:
        super().__init__(f"Unknown compiler version: {version}")
        self.version = version


class UnresolvableVersionError(SolbuildError):
    """Raised when no registered profile satisfies a source unit's constraint."""

    def __init__(self, unit: str, constraint: str | None, reason: str = "") -> None:
        detail = f"no registered compiler satisfies '{constraint}'" if constraint else "no default compiler configured"
        if reason:
            detail = reason
        super().__init__(f"Cannot resolve compiler for {unit}: {detail}")
        self.unit = unit
        self.constraint = constraint


class CompilationError(SolbuildError):
    """Compilation of one source unit failed.

    Attributes:
        unit: Identifier of the source unit.
        diagnostics: Structured compiler diagnostics for this unit.
    """

    def __init__(self, unit: str, diagnostics: Sequence["Diagnostic"]) -> None:
        self.unit = unit
        self.diagnostics = list(diagnostics)
        first = self.diagnostics[0].message if self.diagnostics else "unknown error"
        super().__init__(f"Compilation failed for {unit}: {first}")


class CompilerInvocationError(SolbuildError):
    """The compiler could not be run or produced unusable output.

    Fails every unit of the affected version group.
    """

    pass


class BuildFailedError(SolbuildError):
    """Aggregate of every CompilationError from one build invocation."""

    def __init__(self, errors: Sequence[CompilationError]) -> None:
        self.errors = list(errors)
        units = ", ".join(e.unit for e in self.errors)
        super().__init__(f"{len(self.errors)} source unit(s) failed to compile: {units}")


class PostProcessorError(SolbuildError):
    """A post-processor failed. Never fails unrelated processors."""

    def __init__(self, processor: str, cause: BaseException | str) -> None:
        super().__init__(f"Post-processor '{processor}' failed: {cause}")
        self.processor = processor
        self.cause = cause


class IncompatibleSettingsError(SolbuildError):
    """Raised for setting combinations the orchestrator refuses to build."""

    pass


class UnknownNetworkError(SolbuildError):
    """Raised when a network target name is not configured."""

    def __init__(self, name: str, available: Sequence[str] = ()) -> None:
        hint = f" (available: {', '.join(available)})" if available else ""
        super().__init__(f"Unknown network: {name}{hint}")
        self.name = name


class BuildCancelledError(SolbuildError):
    """Raised inside the pipeline when a build is cancelled."""

    pass
