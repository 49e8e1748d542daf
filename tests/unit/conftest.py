"""Shared fixtures for solbuild unit tests.

Compilation is exercised through FakeBackend, which mimics solc's
standard-JSON behaviour closely enough for the pipeline: a batch containing
a source with ``// expect-error`` reports a ParserError against that source
and produces no contracts at all.
"""

import hashlib
import json
import re
import threading
from pathlib import Path
from typing import Any, Callable

import pytest

from solbuild.cancellation import CancellationToken
from solbuild.compilers.models import CompileRequest, CompilerOutput, ContractArtifact, Diagnostic, Severity
from solbuild.config import load_project_config
from solbuild.config.project_config import ProjectConfig
from solbuild.errors import CompilerInvocationError

FAIL_MARKER = "// expect-error"
_CONTRACT_RE = re.compile(r"^\s*(?:abstract\s+)?(?:contract|library|interface)\s+(\w+)", re.MULTILINE)
_FUNCTION_RE = re.compile(r"function\s+(\w+)\s*\(")


def fake_contract(source: str, name: str, text: str, version: str) -> ContractArtifact:
    digest = hashlib.sha256(f"{version}:{source}:{name}:{text}".encode()).digest()
    abi = [
        {"type": "function", "name": fn, "inputs": [], "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view"}
        for fn in sorted(set(_FUNCTION_RE.findall(text)))
    ]
    return ContractArtifact(
        name=name,
        source=source,
        abi=abi,
        bytecode=digest,
        deployed_bytecode=digest[:16],
        metadata={"compiler": {"version": version}},
        gas_estimates={"creation": {"totalCost": str(100_000 + len(text))}},
    )


class FakeBackend:
    """In-process stand-in for SolcBackend.

    Args:
        delay: Seconds each invocation waits (interruptible by cancellation).
        broken_versions: Versions whose invocations fail at tool level.
        slow_versions: Versions the delay applies to (all when empty).
    """

    def __init__(
        self,
        delay: float = 0.0,
        broken_versions: tuple[str, ...] = (),
        slow_versions: tuple[str, ...] = (),
    ) -> None:
        self.delay = delay
        self.broken_versions = set(broken_versions)
        self.slow_versions = set(slow_versions)
        self.requests: list[CompileRequest] = []
        self.started = threading.Event()
        self._lock = threading.Lock()

    def compile(self, request: CompileRequest, token: CancellationToken) -> CompilerOutput:
        with self._lock:
            self.requests.append(request)
        self.started.set()
        if self.delay and (not self.slow_versions or request.profile.version in self.slow_versions):
            token.wait(self.delay)
        token.raise_if_cancelled()
        if request.profile.version in self.broken_versions:
            raise CompilerInvocationError(f"solc {request.profile.version} crashed")

        output = CompilerOutput()
        for ident, text in sorted(request.sources.items()):
            if FAIL_MARKER in text:
                output.diagnostics.append(
                    Diagnostic(Severity.ERROR, "Expected ';' but got '}'", source=ident, error_type="ParserError")
                )
        if output.errors:
            return output

        for target in request.targets:
            text = request.sources[target]
            contracts = [fake_contract(target, name, text, request.profile.version) for name in _CONTRACT_RE.findall(text)]
            output.contracts[target] = sorted(contracts, key=lambda c: c.name)
        return output

    @property
    def compiled_batches(self) -> list[tuple[str, tuple[str, ...]]]:
        with self._lock:
            return [(r.profile.version, r.targets) for r in self.requests]


def write_sources(root: Path, sources: dict[str, str]) -> None:
    for identifier, text in sources.items():
        path = root / identifier
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")


def project_settings(**overrides: Any) -> dict[str, Any]:
    """solbuild.json content with two compilers and every post-processor off."""
    settings: dict[str, Any] = {
        "solidity": {
            "compilers": [
                {"version": "0.8.0", "settings": {"optimizer": {"enabled": True, "runs": 200}}},
                {"version": "0.8.2", "settings": {"optimizer": {"enabled": True, "runs": 200}}},
            ],
        },
        "typechain": {"runOnCompile": False},
        "spdxLicenseIdentifier": {"runOnCompile": False},
        "docgen": {"runOnCompile": False},
        "coverage": {"runOnCompile": False},
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(settings.get(key), dict):
            settings[key] = {**settings[key], **value}
        else:
            settings[key] = value
    return settings


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def backend_factory() -> Callable[..., FakeBackend]:
    return FakeBackend


@pytest.fixture
def make_project(tmp_path: Path) -> Callable[..., ProjectConfig]:
    """Create a project under tmp_path and return its loaded configuration.

    Usage:
        config = make_project({"contracts/A.sol": "..."}, typechain={"runOnCompile": True})
    """

    def _make(sources: dict[str, str], **settings: Any) -> ProjectConfig:
        write_sources(tmp_path, sources)
        (tmp_path / "contracts").mkdir(exist_ok=True)
        (tmp_path / "solbuild.json").write_text(json.dumps(project_settings(**settings)), encoding="utf-8")
        return load_project_config(tmp_path)

    return _make


@pytest.fixture
def sol_source() -> Callable[..., str]:
    """Build a small Solidity source text."""

    def _source(name: str, pragma: str | None = "^0.8.0", imports: tuple[str, ...] = (), broken: bool = False, body: str = "") -> str:
        lines = ["// SPDX-License-Identifier: MIT"]
        if pragma:
            lines.append(f"pragma solidity {pragma};")
        lines += [f'import "{path}";' for path in imports]
        lines.append(f"contract {name} {{")
        lines.append(body or f"    function value{name}() external pure returns (uint256) {{ return 1; }}")
        if broken:
            lines.append(f"    {FAIL_MARKER}")
        lines.append("}")
        return "\n".join(lines) + "\n"

    return _source
