"""Compiler Version Registry.

Maps a compiler version string to a CompilerProfile carrying its optimizer
settings and any extra standard-JSON settings. The registry is built once
from configuration and passed by reference to the resolver and the build
pipeline; after freeze() it rejects further registrations, so concurrent
build workers only ever read it.
"""

from __future__ import annotations

import copy
import hashlib
import json
import threading
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping

from semantic_version import Version

from ..errors import ConfigError, DuplicateVersionError, UnknownVersionError


def _deep_merge(base: dict[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``extra`` into a copy of ``base``."""
    merged = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value) if isinstance(value, (dict, list)) else value
    return merged


@dataclass(frozen=True)
class CompilerProfile:
    """A compiler version plus its optimizer/feature configuration.

    Attributes:
        version: Exact semantic version of the compiler (e.g. "0.8.2")
        optimizer_enabled: Whether the optimizer runs
        optimizer_runs: Optimizer "runs" parameter
        extra_flags: Extra settings deep-merged into the standard-JSON
            ``settings`` object (e.g. ``{"optimizer": {"details": {"yul": true}}}``)
        solc_path: Explicit compiler binary; None means locate/install via solcx
    """

    version: str
    optimizer_enabled: bool = True
    optimizer_runs: int = 200
    extra_flags: Mapping[str, Any] = field(default_factory=dict, hash=False)
    solc_path: str | None = None

    def __post_init__(self) -> None:
        try:
            Version(self.version)
        except ValueError as e:
            raise ConfigError(f"Invalid compiler version '{self.version}': {e}") from e
        if self.optimizer_runs < 0:
            raise ConfigError(f"optimizer runs must be >= 0 for {self.version}, got {self.optimizer_runs}")
        # Freeze a private copy so callers cannot mutate a registered profile.
        object.__setattr__(self, "extra_flags", MappingProxyType(copy.deepcopy(dict(self.extra_flags))))

    @property
    def semver(self) -> Version:
        return Version(self.version)

    def settings(self) -> dict[str, Any]:
        """Return the standard-JSON ``settings`` block for this profile."""
        base: dict[str, Any] = {
            "optimizer": {
                "enabled": self.optimizer_enabled,
                "runs": self.optimizer_runs,
            }
        }
        return _deep_merge(base, self.extra_flags)

    def settings_hash(self) -> str:
        """Stable hash of version + settings, used by the incremental cache."""
        payload = json.dumps({"version": self.version, "settings": self.settings()}, sort_keys=True)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def without_optimizer(self) -> "CompilerProfile":
        """Copy of this profile with the optimizer disabled."""
        extra = copy.deepcopy(dict(self.extra_flags))
        optimizer = extra.get("optimizer")
        if isinstance(optimizer, dict):
            optimizer.pop("details", None)
            optimizer["enabled"] = False
        return replace(self, optimizer_enabled=False, extra_flags=extra)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the solbuild.json compiler entry format."""
        data: dict[str, Any] = {
            "version": self.version,
            "optimizer": {"enabled": self.optimizer_enabled, "runs": self.optimizer_runs},
        }
        if self.extra_flags:
            data["settings"] = copy.deepcopy(dict(self.extra_flags))
        if self.solc_path:
            data["solc_path"] = self.solc_path
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompilerProfile":
        """Parse a compiler entry.

        Accepts ``{"version", "optimizer": {"enabled", "runs"}, "settings", "solc_path"}``.
        Anything under ``settings`` besides ``optimizer.enabled``/``optimizer.runs``
        becomes extra_flags.

        Raises:
            ConfigError: If the entry is malformed.
        """
        if not isinstance(data, Mapping):
            raise ConfigError(f"Compiler entry must be an object, got {type(data).__name__}")
        try:
            version = str(data["version"])
        except KeyError as e:
            raise ConfigError("Compiler entry is missing 'version'") from e

        extra = copy.deepcopy(dict(data.get("settings", {})))
        optimizer = dict(data.get("optimizer", {}))
        settings_optimizer = extra.get("optimizer")
        if isinstance(settings_optimizer, dict):
            # Hardhat nests the optimizer under settings; accept both spellings.
            optimizer.setdefault("enabled", settings_optimizer.pop("enabled", True))
            optimizer.setdefault("runs", settings_optimizer.pop("runs", 200))
            if not settings_optimizer:
                extra.pop("optimizer")

        try:
            runs = int(optimizer.get("runs", 200))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid optimizer runs for {version}: {optimizer.get('runs')!r}") from e

        return cls(
            version=version,
            optimizer_enabled=bool(optimizer.get("enabled", True)),
            optimizer_runs=runs,
            extra_flags=extra,
            solc_path=data.get("solc_path"),
        )


class CompilerRegistry:
    """Registered compiler profiles keyed by version string.

    Usage:
        registry = CompilerRegistry([CompilerProfile("0.8.0"), CompilerProfile("0.8.2")])
        registry.lookup("0.8.2")
        registry.default_profile()  # highest version unless a default is configured
        registry.freeze()
    """

    def __init__(self, profiles: Iterable[CompilerProfile] = (), default_version: str | None = None) -> None:
        self._profiles: dict[str, CompilerProfile] = {}
        self._lock = threading.Lock()
        self._frozen = False
        for profile in profiles:
            self.register(profile)
        if default_version is not None:
            # Fail fast on a default that names an unregistered compiler.
            self.lookup(default_version)
        self._default_version = default_version

    def register(self, profile: CompilerProfile) -> None:
        """Register a profile.

        Raises:
            DuplicateVersionError: If the version is already registered.
            RuntimeError: If the registry has been frozen.
        """
        with self._lock:
            if self._frozen:
                raise RuntimeError("CompilerRegistry is frozen")
            if profile.version in self._profiles:
                raise DuplicateVersionError(profile.version)
            self._profiles[profile.version] = profile

    def lookup(self, version: str) -> CompilerProfile:
        """Return the profile for an exact version.

        Raises:
            UnknownVersionError: If the version is not registered.
        """
        with self._lock:
            profile = self._profiles.get(version)
        if profile is None:
            raise UnknownVersionError(version)
        return profile

    def freeze(self) -> "CompilerRegistry":
        with self._lock:
            self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def default_version(self) -> str | None:
        return self._default_version

    def versions(self) -> list[str]:
        """Registered versions in ascending semver order."""
        with self._lock:
            return sorted(self._profiles, key=Version)

    def profiles(self) -> list[CompilerProfile]:
        """Registered profiles in ascending semver order."""
        return [self.lookup(v) for v in self.versions()]

    def default_profile(self) -> CompilerProfile | None:
        """Profile used for source units without a version constraint.

        The configured default version wins; otherwise the highest registered
        version. None when the registry is empty.
        """
        if self._default_version is not None:
            return self.lookup(self._default_version)
        versions = self.versions()
        if not versions:
            return None
        return self.lookup(versions[-1])

    def without_optimizer(self) -> "CompilerRegistry":
        """Frozen copy of this registry with every optimizer disabled."""
        copy_registry = CompilerRegistry(
            (p.without_optimizer() for p in self.profiles()),
            default_version=self._default_version,
        )
        return copy_registry.freeze()

    @classmethod
    def from_dicts(cls, entries: Iterable[Mapping[str, Any]], default_version: str | None = None) -> "CompilerRegistry":
        """Build a frozen registry from solbuild.json compiler entries."""
        registry = cls((CompilerProfile.from_dict(e) for e in entries), default_version=default_version)
        return registry.freeze()

    def __contains__(self, version: object) -> bool:
        with self._lock:
            return version in self._profiles

    def __iter__(self) -> Iterator[CompilerProfile]:
        return iter(self.profiles())

    def __len__(self) -> int:
        with self._lock:
            return len(self._profiles)

    def __repr__(self) -> str:
        return f"CompilerRegistry(versions={self.versions()!r}, default={self._default_version!r})"
