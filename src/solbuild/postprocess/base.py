"""Post-processor interface.

A post-processor consumes the ArtifactSet of a completed build and writes
derived output (type bindings, docs, license headers, instrumented sources)
to its own output location.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from ..build.artifact_set import ArtifactSet
from ..build.models import ProcessorOutput
from ..cancellation import CancellationToken
from ..compilers.resolver import VersionAssignment
from ..config.project_config import PostProcessorConfig, ProjectConfig


@dataclass
class ProcessorContext:
    """Everything a post-processor may read.

    Attributes:
        config: Project configuration
        artifacts: Artifacts of the completed build (append-only)
        assignments: Version assignment of every source unit
        token: Cancellation token of the invocation
    """

    config: ProjectConfig
    artifacts: ArtifactSet
    assignments: list[VersionAssignment] = field(default_factory=list)
    token: CancellationToken = field(default_factory=CancellationToken)


class PostProcessor(ABC):
    """Base class for artifact post-processors.

    Processors with ``rewrites_sources`` set edit project sources in place;
    they run before compilation so the artifacts reflect the rewritten text.
    """

    rewrites_sources = False

    def __init__(self, processor_config: PostProcessorConfig) -> None:
        self.processor_config = processor_config

    @property
    def name(self) -> str:
        return self.processor_config.name

    @property
    def order(self) -> int:
        return self.processor_config.order

    @property
    def run_on_build(self) -> bool:
        return self.processor_config.run_on_build

    @property
    def output_location(self) -> Path:
        return self.processor_config.output_location

    @abstractmethod
    def run(self, context: ProcessorContext) -> ProcessorOutput:
        """Produce this processor's output.

        Raises:
            Exception: Any failure; the runner wraps it in PostProcessorError.
        """

    def output(self, files: list[Path], detail: str) -> ProcessorOutput:
        return ProcessorOutput(processor=self.name, location=self.output_location, files=tuple(sorted(files)), detail=detail)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, order={self.order})"
