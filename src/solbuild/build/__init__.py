"""Build pipeline: compilation, artifact storage and the incremental cache.

BuildOrchestrator lives in ``solbuild.build.orchestrator`` and is imported
from there; post-processors depend on this package.
"""

from .artifact_set import ArtifactSet
from .artifacts import ArtifactStore
from .cache import BuildCache
from .callbacks import NullCallback, ProgressCallback
from .models import (
    BuildArtifact,
    BuildReport,
    BuildStatus,
    GroupPhase,
    ProcessorOutput,
    ProcessorResult,
    ProcessorStatus,
    UnitOutcome,
    UnitResult,
)
from .pipeline import BuildPipeline, PipelineResult

__all__ = [
    "ArtifactSet",
    "ArtifactStore",
    "BuildArtifact",
    "BuildCache",
    "BuildPipeline",
    "BuildReport",
    "BuildStatus",
    "GroupPhase",
    "NullCallback",
    "PipelineResult",
    "ProcessorOutput",
    "ProcessorResult",
    "ProcessorStatus",
    "ProgressCallback",
    "UnitOutcome",
    "UnitResult",
]
