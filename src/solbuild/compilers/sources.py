"""Source discovery and import resolution.

Scans the project's sources directory for ``.sol`` files and turns each into
a SourceUnit carrying the raw ``pragma solidity`` constraint (or an explicit
override) and the identifiers of the project files it imports. Also reads
the full import closure of a batch so the compiler receives every file it
needs.
"""

from __future__ import annotations

import hashlib
import logging
import posixpath
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Mapping

from ..errors import ConfigError
from .resolver import SourceUnit

logger = logging.getLogger(__name__)

_PRAGMA_RE = re.compile(r"^\s*pragma\s+solidity\s+([^;]+);", re.MULTILINE)
_IMPORT_RE = re.compile(
    r"""^\s*import\s+(?:[^'";]*?\bfrom\s+)?["']([^"']+)["']""",
    re.MULTILINE,
)
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)


def strip_comments(text: str) -> str:
    """Remove comments so commented-out pragmas/imports are ignored."""
    text = _BLOCK_COMMENT_RE.sub(lambda m: "\n" * m.group(0).count("\n"), text)
    return _LINE_COMMENT_RE.sub("", text)


def parse_pragma(text: str) -> str | None:
    """Return the ``pragma solidity`` constraint of a source, or None.

    Multiple pragmas are joined with a space, which is an intersection in
    npm range syntax.
    """
    found = [m.group(1).strip() for m in _PRAGMA_RE.finditer(strip_comments(text))]
    if not found:
        return None
    return " ".join(found)


def parse_imports(text: str) -> list[str]:
    """Return raw import paths in declaration order."""
    return [m.group(1) for m in _IMPORT_RE.finditer(strip_comments(text))]


@dataclass
class SourceTree:
    """Reads project and library sources by identifier.

    Identifiers are POSIX paths relative to the project root
    (``contracts/Token.sol``). Imports that are not relative
    (``@openzeppelin/contracts/...``) are looked up under each library
    directory and, after applying remappings, under the project root.

    Attributes:
        root: Project root directory
        library_dirs: Directories searched for package imports (e.g. node_modules)
        remappings: ``prefix=target`` import remappings
    """

    root: Path
    library_dirs: tuple[Path, ...] = ()
    remappings: tuple[str, ...] = ()
    _cache: dict[str, str] = field(default_factory=dict, repr=False)

    def resolve_import(self, importer: str, import_path: str) -> str:
        """Resolve an import statement to a source identifier."""
        if import_path.startswith("./") or import_path.startswith("../"):
            return posixpath.normpath(posixpath.join(posixpath.dirname(importer), import_path))
        for mapping in self.remappings:
            prefix, _, target = mapping.partition("=")
            if prefix and import_path.startswith(prefix):
                return posixpath.normpath(target + import_path[len(prefix):])
        return import_path

    def locate(self, identifier: str) -> Path | None:
        """Return the file backing an identifier, or None if it cannot be found."""
        candidate = self.root / identifier
        if candidate.is_file():
            return candidate
        for lib_dir in self.library_dirs:
            candidate = lib_dir / identifier
            if candidate.is_file():
                return candidate
        return None

    def read(self, identifier: str) -> str:
        """Read a source by identifier (cached per tree).

        Raises:
            FileNotFoundError: If the source cannot be located.
        """
        if identifier not in self._cache:
            path = self.locate(identifier)
            if path is None:
                raise FileNotFoundError(f"Source not found: {identifier}")
            self._cache[identifier] = path.read_text(encoding="utf-8")
        return self._cache[identifier]

    def closure(self, identifiers: Iterable[str]) -> dict[str, str]:
        """Read every source reachable through imports from ``identifiers``.

        Unresolvable imports are skipped here; the compiler reports them as
        diagnostics against the importing unit.

        Returns:
            Mapping of identifier -> source text, sorted by identifier.
        """
        sources: dict[str, str] = {}
        pending = list(identifiers)
        while pending:
            ident = pending.pop()
            if ident in sources:
                continue
            try:
                text = self.read(ident)
            except FileNotFoundError:
                logger.debug("Import not found, leaving it to the compiler: %s", ident)
                continue
            sources[ident] = text
            for raw in parse_imports(text):
                pending.append(self.resolve_import(ident, raw))
        return dict(sorted(sources.items()))

    def closure_hash(self, identifier: str) -> str:
        """Hash of a source together with everything it imports."""
        sha = hashlib.sha256()
        for ident, text in self.closure([identifier]).items():
            sha.update(ident.encode("utf-8"))
            sha.update(b"\0")
            sha.update(text.encode("utf-8"))
            sha.update(b"\0")
        return sha.hexdigest()


def discover_sources(
    tree: SourceTree,
    sources_dir: str,
    overrides: Mapping[str, str] | None = None,
) -> list[SourceUnit]:
    """Scan ``sources_dir`` for .sol files and build SourceUnits.

    Args:
        tree: Source tree rooted at the project directory.
        sources_dir: Sources directory relative to the project root.
        overrides: Identifier -> exact compiler version, replacing pragmas.

    Returns:
        Source units sorted by identifier.

    Raises:
        ConfigError: If the sources directory does not exist or an override
            names a file that is not a source unit.
    """
    base = tree.root / sources_dir
    if not base.is_dir():
        raise ConfigError(f"Sources directory not found: {base}")

    overrides = dict(overrides or {})
    files = sorted(base.rglob("*.sol"))
    identifiers = {p.relative_to(tree.root).as_posix() for p in files}

    unknown = sorted(set(overrides) - identifiers)
    if unknown:
        raise ConfigError(f"Compiler overrides name unknown sources: {', '.join(unknown)}")

    units: list[SourceUnit] = []
    for path in files:
        ident = path.relative_to(tree.root).as_posix()
        text = tree.read(ident)
        declared = overrides.get(ident) or parse_pragma(text)
        imports = []
        for raw in parse_imports(text):
            resolved = tree.resolve_import(ident, raw)
            if resolved in identifiers and resolved not in imports:
                imports.append(resolved)
        units.append(
            SourceUnit(
                identifier=ident,
                declared_version=declared,
                path=path,
                imports=tuple(imports),
                pinned=ident in overrides,
            )
        )
    logger.debug("Discovered %d source units under %s", len(units), base)
    return units
