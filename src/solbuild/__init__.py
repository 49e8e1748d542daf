"""solbuild - multi-version smart-contract build orchestrator.

Resolves a compiler version for every contract source, compiles each version
group with its own optimizer settings, writes a deterministic artifact tree,
and runs post-processors (typed bindings, license headers, documentation,
coverage instrumentation) over the result.

Public API:
    BuildOrchestrator: Runs resolve -> compile -> post-process for a project.
    CompilerRegistry: Registered compiler profiles.
    NetworkRegistry: Named deployment targets.
    load_project_config: Load solbuild.json merged over packaged defaults.
"""

from .build.models import BuildReport, BuildStatus
from .build.orchestrator import BuildOrchestrator
from .compilers.registry import CompilerProfile, CompilerRegistry
from .compilers.resolver import SourceUnit, VersionAssignment, resolve
from .config import load_project_config
from .networks import NetworkRegistry, NetworkTarget

__version__ = "0.3.0"

__all__ = [
    "BuildOrchestrator",
    "BuildReport",
    "BuildStatus",
    "CompilerProfile",
    "CompilerRegistry",
    "NetworkRegistry",
    "NetworkTarget",
    "SourceUnit",
    "VersionAssignment",
    "load_project_config",
    "resolve",
]
