"""Source-to-Compiler Resolver.

Assigns exactly one registered CompilerProfile to every source unit.

Policy, in order:
    1. A unit pinned by an explicit override gets exactly that version.
    2. A unit with no constraint (on itself or on anything it imports) gets
       the registry's default profile.
    3. A bare version constraint that is registered is taken as-is
       (exact match first).
    4. Otherwise the highest registered version satisfying the unit's own
       constraint and the constraints of every unit it transitively imports.

Resolution is pure: it reads the registry, never writes anything and never
invokes a compiler, so it is safe to re-run at any time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from semantic_version import NpmSpec, Version

from ..errors import UnresolvableVersionError
from .registry import CompilerProfile, CompilerRegistry

# ">= 0.6.0" is legal in a pragma but not in npm range syntax.
_OPERATOR_SPACE_RE = re.compile(r"([<>=~^]+)\s+(?=\d)")


@dataclass(frozen=True)
class SourceUnit:
    """One logical compilation input.

    Attributes:
        identifier: Project-relative POSIX path, e.g. "contracts/Token.sol"
        declared_version: Raw version constraint (pragma or override), or None
        path: File on disk, if any
        imports: Identifiers of project source units this unit imports
        pinned: True when declared_version comes from an explicit override
    """

    identifier: str
    declared_version: str | None = None
    path: Path | None = None
    imports: tuple[str, ...] = ()
    pinned: bool = False


@dataclass(frozen=True)
class VersionAssignment:
    """A source unit paired with the compiler profile that will build it."""

    source_unit: SourceUnit
    profile: CompilerProfile

    @property
    def identifier(self) -> str:
        return self.source_unit.identifier

    @property
    def version(self) -> str:
        return self.profile.version


def normalize_constraint(constraint: str) -> str:
    """Normalise a pragma constraint into npm range syntax."""
    return " ".join(_OPERATOR_SPACE_RE.sub(r"\1", constraint.strip()).split())


def parse_constraint(unit: str, constraint: str) -> NpmSpec:
    """Parse a version constraint.

    Raises:
        UnresolvableVersionError: If the constraint is not valid range syntax.
    """
    try:
        return NpmSpec(normalize_constraint(constraint))
    except ValueError as e:
        raise UnresolvableVersionError(unit, constraint, reason=f"invalid version constraint '{constraint}': {e}") from e


def _exact_version(constraint: str) -> str | None:
    """Return the version if the constraint names one exact version."""
    text = normalize_constraint(constraint).lstrip("=")
    try:
        return str(Version(text))
    except ValueError:
        return None


def _constraint_closure(unit: SourceUnit, by_id: Mapping[str, SourceUnit]) -> list[tuple[str, str]]:
    """Collect (identifier, constraint) for the unit and everything it imports."""
    constraints: list[tuple[str, str]] = []
    seen: set[str] = set()
    stack = [unit.identifier]
    while stack:
        ident = stack.pop()
        if ident in seen:
            continue
        seen.add(ident)
        current = by_id.get(ident)
        if current is None:
            continue
        if current.declared_version:
            constraints.append((current.identifier, current.declared_version))
        stack.extend(current.imports)
    return constraints


def resolve_unit(
    unit: SourceUnit,
    registry: CompilerRegistry,
    by_id: Mapping[str, SourceUnit] | None = None,
) -> CompilerProfile:
    """Resolve the compiler profile for a single unit.

    Args:
        unit: Unit to resolve.
        registry: Registered compiler profiles.
        by_id: All units of the invocation, used to follow imports.

    Raises:
        UnknownVersionError: If a pinned version is not registered.
        UnresolvableVersionError: If no registered profile satisfies the unit.
    """
    if unit.pinned and unit.declared_version:
        return registry.lookup(unit.declared_version)

    by_id = by_id if by_id is not None else {unit.identifier: unit}
    constraints = _constraint_closure(unit, by_id)

    if not constraints:
        default = registry.default_profile()
        if default is None:
            raise UnresolvableVersionError(unit.identifier, None)
        return default

    specs = [parse_constraint(ident, c) for ident, c in constraints]

    if unit.declared_version:
        exact = _exact_version(unit.declared_version)
        if exact is not None and exact in registry and all(Version(exact) in s for s in specs):
            return registry.lookup(exact)

    candidates = [v for v in registry.versions() if all(Version(v) in s for s in specs)]
    if not candidates:
        if unit.declared_version and not any(Version(v) in specs[0] for v in registry.versions()):
            raise UnresolvableVersionError(unit.identifier, unit.declared_version)
        combined = " ".join(c for _, c in constraints)
        importers = ", ".join(ident for ident, _ in constraints if ident != unit.identifier)
        reason = f"no registered compiler satisfies '{combined}'"
        if importers:
            reason += f" (constraints from imports: {importers})"
        raise UnresolvableVersionError(unit.identifier, combined, reason=reason)
    return registry.lookup(candidates[-1])


def resolve(units: Iterable[SourceUnit], registry: CompilerRegistry) -> list[VersionAssignment]:
    """Assign one compiler profile to every source unit.

    Args:
        units: Source units of this build invocation.
        registry: Registered compiler profiles.

    Returns:
        One VersionAssignment per unit, ordered by unit identifier.

    Raises:
        UnknownVersionError: If a pinned version is not registered.
        UnresolvableVersionError: On the first unit that cannot be resolved.
    """
    unit_list = sorted(units, key=lambda u: u.identifier)
    by_id = {u.identifier: u for u in unit_list}
    return [VersionAssignment(u, resolve_unit(u, registry, by_id)) for u in unit_list]


def group_by_version(assignments: Iterable[VersionAssignment]) -> dict[str, list[VersionAssignment]]:
    """Group assignments by compiler version, ascending by semver."""
    groups: dict[str, list[VersionAssignment]] = {}
    for assignment in assignments:
        groups.setdefault(assignment.version, []).append(assignment)
    return {v: groups[v] for v in sorted(groups, key=Version)}
