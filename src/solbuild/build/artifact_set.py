"""Shared artifact collection for one build invocation.

The ArtifactSet is the only object mutated by several actors: the pipeline
adds one BuildArtifact per source unit (keys never overlap between version
groups) and post-processors append their outputs. Nothing is ever removed.
"""

import threading
from typing import Iterator

from ..compilers.models import ContractArtifact
from .models import BuildArtifact, ProcessorOutput


class ArtifactSet:
    """Append-only collection of build artifacts keyed by source unit identifier."""

    def __init__(self) -> None:
        self._artifacts: dict[str, BuildArtifact] = {}
        self._outputs: list[ProcessorOutput] = []
        self._lock = threading.Lock()

    def add(self, artifact: BuildArtifact) -> None:
        """Add the artifact of one source unit.

        Raises:
            ValueError: If an artifact for the same unit is already present.
        """
        with self._lock:
            if artifact.identifier in self._artifacts:
                raise ValueError(f"Artifact already present: {artifact.identifier}")
            self._artifacts[artifact.identifier] = artifact

    def get(self, identifier: str) -> BuildArtifact:
        """Return the artifact of a unit.

        Raises:
            KeyError: If the unit has no artifact.
        """
        with self._lock:
            if identifier not in self._artifacts:
                raise KeyError(f"No artifact for {identifier}")
            return self._artifacts[identifier]

    def identifiers(self) -> list[str]:
        with self._lock:
            return sorted(self._artifacts)

    def artifacts(self) -> list[BuildArtifact]:
        """All artifacts sorted by unit identifier."""
        with self._lock:
            return [self._artifacts[k] for k in sorted(self._artifacts)]

    def contracts(self) -> list[tuple[BuildArtifact, ContractArtifact]]:
        """Every (unit artifact, contract) pair in deterministic order."""
        return [(artifact, contract) for artifact in self.artifacts() for contract in artifact.contracts]

    def add_output(self, output: ProcessorOutput) -> None:
        with self._lock:
            self._outputs.append(output)

    def outputs(self) -> list[ProcessorOutput]:
        with self._lock:
            return list(self._outputs)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._artifacts

    def __iter__(self) -> Iterator[BuildArtifact]:
        return iter(self.artifacts())

    def __len__(self) -> int:
        with self._lock:
            return len(self._artifacts)
