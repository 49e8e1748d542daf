"""
Type-safe project configuration models.

solbuild.json (merged over the packaged defaults) is parsed into these frozen
dataclasses once at process start. Nothing downstream reads raw dicts.
Key names follow the Hardhat config format (``runOnCompile``, ``outDir``,
``except``...) so an existing configuration translates one-to-one.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ..compilers.registry import CompilerProfile, CompilerRegistry
from ..errors import ConfigError
from ..networks import NetworkRegistry

MAX_WORKERS_ENV = "SOLBUILD_MAX_WORKERS"


def _section(data: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"'{key}' must be an object, got {type(value).__name__}")
    return dict(value)


def _str_tuple(value: Any, key: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"'{key}' must be a list of strings")
    return tuple(str(v) for v in value)


def _int(value: Any, key: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"'{key}' must be an integer, got {value!r}") from e


@dataclass(frozen=True)
class PostProcessorConfig:
    """Declares whether and when a post-processor executes.

    Attributes:
        name: Processor name (unique per build)
        run_on_build: Run automatically when a build completes
        output_location: Directory (or source tree) the processor writes to
        order: Ascending execution priority; equal values may run concurrently
    """

    name: str
    run_on_build: bool
    output_location: Path
    order: int


@dataclass(frozen=True)
class PathsConfig:
    """Project directories, all relative to ``root``."""

    root: Path
    sources: str = "contracts"
    artifacts: str = "artifacts"
    cache: str = "cache"
    tests: str = "test"
    libraries: Tuple[str, ...] = ("node_modules",)

    @property
    def sources_dir(self) -> Path:
        return self.root / self.sources

    @property
    def artifacts_dir(self) -> Path:
        return self.root / self.artifacts

    @property
    def cache_dir(self) -> Path:
        return self.root / self.cache

    @property
    def tests_dir(self) -> Path:
        return (self.root / self.tests).resolve()

    @property
    def library_dirs(self) -> Tuple[Path, ...]:
        return tuple(self.root / lib for lib in self.libraries)

    def resolve(self, location: str) -> Path:
        return (self.root / location).resolve()

    @classmethod
    def from_dict(cls, root: Path, data: Mapping[str, Any]) -> "PathsConfig":
        return cls(
            root=root,
            sources=str(data.get("sources", "contracts")),
            artifacts=str(data.get("artifacts", "artifacts")),
            cache=str(data.get("cache", "cache")),
            tests=str(data.get("tests", "test")),
            libraries=_str_tuple(data.get("libraries", ["node_modules"]), "paths.libraries"),
        )


@dataclass(frozen=True)
class SolidityConfig:
    """Compiler list plus resolution settings."""

    compilers: Tuple[CompilerProfile, ...]
    default_version: Optional[str] = None
    overrides: Dict[str, str] = field(default_factory=dict)
    remappings: Tuple[str, ...] = ()

    def registry(self) -> CompilerRegistry:
        """Build the frozen compiler registry for this configuration."""
        registry = CompilerRegistry(self.compilers, default_version=self.default_version)
        return registry.freeze()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SolidityConfig":
        entries = data.get("compilers")
        if entries is None and "version" in data:
            # Single-compiler shorthand: {"version": "0.8.2", "settings": {...}}
            entries = [data]
        if not isinstance(entries, list) or not entries:
            raise ConfigError("'solidity.compilers' must be a non-empty list")
        overrides = data.get("overrides") or {}
        if not isinstance(overrides, Mapping):
            raise ConfigError("'solidity.overrides' must map source paths to versions")
        parsed_overrides: Dict[str, str] = {}
        for path, value in overrides.items():
            # Hardhat allows {"version": ...} objects as override values.
            version = value.get("version") if isinstance(value, Mapping) else value
            if not version:
                raise ConfigError(f"Override for {path} has no version")
            parsed_overrides[str(path)] = str(version)
        return cls(
            compilers=tuple(CompilerProfile.from_dict(e) for e in entries),
            default_version=data.get("defaultVersion"),
            overrides=parsed_overrides,
            remappings=_str_tuple(data.get("remappings"), "solidity.remappings"),
        )


@dataclass(frozen=True)
class TypechainConfig:
    out_dir: str = "typechain"
    target: str = "ethers-v5"
    run_on_build: bool = True
    order: int = 20

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TypechainConfig":
        return cls(
            out_dir=str(data.get("outDir", "typechain")),
            target=str(data.get("target", "ethers-v5")),
            run_on_build=bool(data.get("runOnCompile", True)),
            order=_int(data.get("order", 20), "typechain.order"),
        )


@dataclass(frozen=True)
class LicenseConfig:
    license: Optional[str] = None
    overwrite: bool = False
    run_on_build: bool = False
    order: int = 10

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LicenseConfig":
        return cls(
            license=data.get("license"),
            overwrite=bool(data.get("overwrite", False)),
            run_on_build=bool(data.get("runOnCompile", False)),
            order=_int(data.get("order", 10), "spdxLicenseIdentifier.order"),
        )


@dataclass(frozen=True)
class DocgenConfig:
    path: str = "./docs"
    clear: bool = False
    run_on_build: bool = False
    exclude: Tuple[str, ...] = ()
    order: int = 30

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DocgenConfig":
        return cls(
            path=str(data.get("path", "./docs")),
            clear=bool(data.get("clear", False)),
            run_on_build=bool(data.get("runOnCompile", False)),
            exclude=_str_tuple(data.get("except"), "docgen.except"),
            order=_int(data.get("order", 30), "docgen.order"),
        )


@dataclass(frozen=True)
class CoverageConfig:
    out_dir: str = "coverage"
    run_on_build: bool = False
    skip_files: Tuple[str, ...] = ()
    order: int = 40

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CoverageConfig":
        return cls(
            out_dir=str(data.get("outDir", "coverage")),
            run_on_build=bool(data.get("runOnCompile", False)),
            skip_files=_str_tuple(data.get("skipFiles"), "coverage.skipFiles"),
            order=_int(data.get("order", 40), "coverage.order"),
        )


@dataclass(frozen=True)
class GasReporterConfig:
    enabled: bool = False
    currency: str = "USD"
    token_price: Optional[float] = None
    gas_price: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GasReporterConfig":
        token_price = data.get("tokenPrice")
        gas_price = data.get("gasPrice")
        try:
            return cls(
                enabled=bool(data.get("enabled", False)),
                currency=str(data.get("currency", "USD")),
                token_price=float(token_price) if token_price is not None else None,
                gas_price=int(gas_price) if gas_price is not None else None,
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid gasReporter settings: {e}") from e


@dataclass(frozen=True)
class TestRunnerConfig:
    """Passthrough settings for the external test runner."""

    __test__ = False  # not a pytest test class

    timeout_ms: int
    tests_dir: Path


@dataclass(frozen=True)
class ProjectConfig:
    """
    Complete, validated project configuration.

    Attributes:
        paths: Project directories
        solidity: Compiler list and resolution settings
        networks: Raw network entries (see network_registry())
        default_network: Network used for gas pricing when none is given
        typechain: Type-binding generator settings
        license: SPDX license-header settings
        docgen: Documentation generator settings
        coverage: Coverage instrumenter settings
        gas_reporter: Gas reporting sink settings
        test_runner: Passthrough settings for the external test runner
        max_workers: Upper bound on concurrent compiler processes (None = CPU count)
    """

    paths: PathsConfig
    solidity: SolidityConfig
    networks: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    default_network: Optional[str] = None
    typechain: TypechainConfig = field(default_factory=TypechainConfig)
    license: LicenseConfig = field(default_factory=LicenseConfig)
    docgen: DocgenConfig = field(default_factory=DocgenConfig)
    coverage: CoverageConfig = field(default_factory=CoverageConfig)
    gas_reporter: GasReporterConfig = field(default_factory=GasReporterConfig)
    test_runner: Optional[TestRunnerConfig] = None
    max_workers: Optional[int] = None

    @property
    def root(self) -> Path:
        return self.paths.root

    def compiler_registry(self) -> CompilerRegistry:
        return self.solidity.registry()

    def network_registry(self) -> NetworkRegistry:
        return NetworkRegistry.from_dict(self.networks, default=self.default_network)

    def processor_configs(self) -> List[PostProcessorConfig]:
        """PostProcessorConfig for every built-in processor, by ascending order."""
        configs = [
            PostProcessorConfig("license", self.license.run_on_build, self.paths.sources_dir, self.license.order),
            PostProcessorConfig("typechain", self.typechain.run_on_build, self.paths.resolve(self.typechain.out_dir), self.typechain.order),
            PostProcessorConfig("docgen", self.docgen.run_on_build, self.paths.resolve(self.docgen.path), self.docgen.order),
            PostProcessorConfig("coverage", self.coverage.run_on_build, self.paths.resolve(self.coverage.out_dir), self.coverage.order),
        ]
        return sorted(configs, key=lambda c: (c.order, c.name))

    @classmethod
    def from_dict(cls, root: Path, data: Mapping[str, Any]) -> "ProjectConfig":
        """
        Parse a merged configuration dictionary.

        Args:
            root: Project root directory
            data: Configuration dictionary (defaults already merged in)

        Returns:
            Validated ProjectConfig

        Raises:
            ConfigError: If a section is missing or invalid
        """
        if not isinstance(data, Mapping):
            raise ConfigError("Configuration root must be an object")

        paths = PathsConfig.from_dict(root, _section(data, "paths"))
        networks = _section(data, "networks")
        for name, entry in networks.items():
            if not isinstance(entry, Mapping):
                raise ConfigError(f"Network '{name}' must be an object")

        mocha = _section(data, "mocha")
        test_runner = TestRunnerConfig(
            timeout_ms=_int(mocha.get("timeout", 2000), "mocha.timeout"),
            tests_dir=paths.tests_dir,
        )

        max_workers = data.get("maxWorkers")
        env_workers = os.environ.get(MAX_WORKERS_ENV)
        if env_workers:
            max_workers = env_workers
        if max_workers is not None:
            max_workers = _int(max_workers, "maxWorkers")
            if max_workers < 1:
                raise ConfigError(f"maxWorkers must be >= 1, got {max_workers}")

        config = cls(
            paths=paths,
            solidity=SolidityConfig.from_dict(_section(data, "solidity")),
            networks={name: dict(entry) for name, entry in networks.items()},
            default_network=data.get("defaultNetwork"),
            typechain=TypechainConfig.from_dict(_section(data, "typechain")),
            license=LicenseConfig.from_dict(_section(data, "spdxLicenseIdentifier")),
            docgen=DocgenConfig.from_dict(_section(data, "docgen")),
            coverage=CoverageConfig.from_dict(_section(data, "coverage")),
            gas_reporter=GasReporterConfig.from_dict(_section(data, "gasReporter")),
            test_runner=test_runner,
            max_workers=max_workers,
        )
        # Validate registries eagerly so a bad config fails at load time.
        config.compiler_registry()
        config.network_registry()
        return config
