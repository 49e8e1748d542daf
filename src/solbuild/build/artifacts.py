"""On-disk artifact store.

Layout: ``<artifacts>/<unit identifier>/<Contract>.json``, one file per
contract, serialized with sorted keys and no timestamps so that rebuilding an
unchanged project yields byte-identical files. Every file is written to a
temporary sibling and atomically renamed into place; an interrupted build
never leaves a half-written artifact behind.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path

from ..compilers.models import ContractArtifact
from ..compilers.resolver import SourceUnit
from .models import BuildArtifact

logger = logging.getLogger(__name__)

TEMP_SUFFIX = ".tmp"


def serialize_contract(contract: ContractArtifact) -> str:
    """Deterministic JSON text for a contract artifact."""
    return json.dumps(contract.to_dict(), indent=2, sort_keys=True) + "\n"


def atomic_write_text(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via a temporary file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_file = path.with_name(path.name + TEMP_SUFFIX)
    with open(temp_file, "w", encoding="utf-8", newline="\n") as f:
        f.write(text)
    os.replace(temp_file, path)


class ArtifactStore:
    """Reads and writes per-unit artifact directories."""

    def __init__(self, artifacts_dir: Path):
        self.artifacts_dir = Path(artifacts_dir)

    def unit_dir(self, identifier: str) -> Path:
        return self.artifacts_dir / identifier

    def contract_path(self, identifier: str, contract_name: str) -> Path:
        return self.unit_dir(identifier) / f"{contract_name}.json"

    def write(self, artifact: BuildArtifact) -> list[Path]:
        """Commit the artifact of one unit.

        Contract files that the unit no longer defines are removed. Files
        whose content is unchanged are left untouched.

        Returns:
            Paths written (unchanged files excluded).
        """
        unit_dir = self.unit_dir(artifact.identifier)
        written: list[Path] = []
        expected: set[str] = set()
        for contract in artifact.contracts:
            path = self.contract_path(artifact.identifier, contract.name)
            expected.add(path.name)
            text = serialize_contract(contract)
            if path.is_file() and path.read_text(encoding="utf-8") == text:
                continue
            atomic_write_text(path, text)
            written.append(path)

        if unit_dir.is_dir():
            for stale in sorted(unit_dir.glob("*.json")):
                if stale.name not in expected:
                    logger.debug("Removing stale contract artifact %s", stale)
                    stale.unlink()
        else:
            # Units without contracts (e.g. only free functions) still get a directory.
            unit_dir.mkdir(parents=True, exist_ok=True)
        return written

    def load(self, unit: SourceUnit, version: str, contract_names: list[str]) -> BuildArtifact | None:
        """Reload a previously written artifact, or None if any file is missing or unreadable."""
        contracts: list[ContractArtifact] = []
        for name in sorted(contract_names):
            path = self.contract_path(unit.identifier, name)
            try:
                with open(path, "r", encoding="utf-8") as f:
                    contracts.append(ContractArtifact.from_dict(json.load(f)))
            except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
                logger.debug("Cached artifact unusable (%s): %s", path, e)
                return None
        return BuildArtifact(source_unit=unit, profile_version=version, contracts=tuple(contracts))

    def unit_identifiers(self) -> set[str]:
        """Identifiers of every unit directory currently on disk."""
        if not self.artifacts_dir.is_dir():
            return set()
        found: set[str] = set()
        for path in self.artifacts_dir.rglob("*.sol"):
            if path.is_dir():
                found.add(path.relative_to(self.artifacts_dir).as_posix())
        return found

    def discard_partial(self) -> int:
        """Delete temporary files left by an interrupted write."""
        if not self.artifacts_dir.is_dir():
            return 0
        removed = 0
        for temp_file in self.artifacts_dir.rglob(f"*{TEMP_SUFFIX}"):
            if temp_file.is_file():
                temp_file.unlink()
                removed += 1
        return removed

    def reconcile(self, current: set[str]) -> list[str]:
        """Remove artifacts of units no longer in the current source set.

        Args:
            current: Identifiers of every unit in the current build.

        Returns:
            Identifiers whose artifacts were removed, sorted.
        """
        self.discard_partial()
        stale = sorted(self.unit_identifiers() - set(current))
        for identifier in stale:
            logger.info("Removing artifacts of deleted source %s", identifier)
            shutil.rmtree(self.unit_dir(identifier), ignore_errors=True)
        self._prune_empty_dirs()
        return stale

    def _prune_empty_dirs(self) -> None:
        if not self.artifacts_dir.is_dir():
            return
        for path in sorted(self.artifacts_dir.rglob("*"), key=lambda p: len(p.parts), reverse=True):
            if path.is_dir() and not path.name.endswith(".sol") and not any(path.iterdir()):
                path.rmdir()

    def clean(self) -> bool:
        """Delete the whole artifacts directory."""
        if not self.artifacts_dir.exists():
            return False
        shutil.rmtree(self.artifacts_dir)
        return True
