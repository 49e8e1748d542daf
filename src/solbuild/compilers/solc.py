"""Compiler invocation backend.

Runs ``solc --standard-json`` for one version group at a time. The binary for
a profile is either configured explicitly (``solc_path``) or located through
py-solc-x, which downloads missing releases on demand. Diagnostics are read
from the structured ``errors`` array of the standard-JSON output, never from
free-form text.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import solcx
from solcx.exceptions import SolcNotInstalled

from ..cancellation import CancellationToken
from ..errors import CompilerInvocationError
from ..subprocess_utils import kill_process_tree, safe_popen
from .models import CompileRequest, CompilerOutput, ContractArtifact, Diagnostic, hex_to_bytes
from .registry import CompilerProfile

logger = logging.getLogger(__name__)

# Outputs every artifact and post-processor needs.
OUTPUT_SELECTION = [
    "abi",
    "metadata",
    "devdoc",
    "userdoc",
    "evm.bytecode.object",
    "evm.bytecode.linkReferences",
    "evm.deployedBytecode.object",
    "evm.gasEstimates",
]

DEFAULT_COMPILE_TIMEOUT = 600.0


@runtime_checkable
class CompilerBackend(Protocol):
    """Protocol for anything that can compile a CompileRequest.

    Implementations must honour the cancellation token: register any child
    process with it, and raise BuildCancelledError once it is cancelled.
    Tool-level failures are reported by raising CompilerInvocationError;
    source-level problems are returned as diagnostics.
    """

    def compile(self, request: CompileRequest, token: CancellationToken) -> CompilerOutput:
        ...


def standard_json_input(request: CompileRequest) -> dict[str, Any]:
    """Build the standard-JSON input document for a request."""
    settings = request.profile.settings()
    settings["outputSelection"] = {target: {"*": list(OUTPUT_SELECTION)} for target in request.targets}
    if request.remappings:
        settings["remappings"] = list(request.remappings)
    return {
        "language": "Solidity",
        "sources": {ident: {"content": text} for ident, text in sorted(request.sources.items())},
        "settings": settings,
    }


def _parse_metadata(raw: Any) -> dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        return {"raw": raw}


def parse_standard_json_output(data: dict[str, Any], targets: tuple[str, ...]) -> CompilerOutput:
    """Convert solc standard-JSON output into a CompilerOutput.

    Only contracts defined in ``targets`` are kept; imported sources are
    compiled as a side effect but belong to their own units.
    """
    output = CompilerOutput()
    output.diagnostics = [Diagnostic.from_solc(e) for e in data.get("errors", [])]

    wanted = set(targets)
    for source, contracts in sorted(data.get("contracts", {}).items()):
        if source not in wanted:
            continue
        artifacts: list[ContractArtifact] = []
        for name, contract in sorted(contracts.items()):
            evm = contract.get("evm", {})
            bytecode = evm.get("bytecode", {})
            artifacts.append(
                ContractArtifact(
                    name=name,
                    source=source,
                    abi=contract.get("abi", []),
                    bytecode=hex_to_bytes(bytecode.get("object", "")),
                    deployed_bytecode=hex_to_bytes(evm.get("deployedBytecode", {}).get("object", "")),
                    metadata=_parse_metadata(contract.get("metadata")),
                    devdoc=contract.get("devdoc", {}),
                    userdoc=contract.get("userdoc", {}),
                    gas_estimates=evm.get("gasEstimates", {}),
                    link_references=bytecode.get("linkReferences", {}),
                )
            )
        output.contracts[source] = artifacts
    return output


class SolcBackend:
    """Compiles through the solc binary in standard-JSON mode.

    Args:
        install_missing: Download missing compiler releases through solcx.
        timeout: Seconds before a compiler process is killed.
    """

    def __init__(self, install_missing: bool = True, timeout: float | None = DEFAULT_COMPILE_TIMEOUT) -> None:
        self._install_missing = install_missing
        self._timeout = timeout
        self._install_lock = threading.Lock()

    def executable(self, profile: CompilerProfile) -> Path:
        """Locate (and optionally install) the compiler binary for a profile.

        Raises:
            CompilerInvocationError: If no binary is available.
        """
        if profile.solc_path:
            path = Path(profile.solc_path)
            if not path.is_file():
                raise CompilerInvocationError(f"Configured solc binary not found: {path}")
            return path

        # Installs are serialised; two groups never download the same release twice.
        with self._install_lock:
            try:
                return Path(solcx.get_executable(profile.version))
            except SolcNotInstalled:
                if not self._install_missing:
                    raise CompilerInvocationError(f"solc {profile.version} is not installed") from None
            logger.info("Installing solc %s", profile.version)
            try:
                solcx.install_solc(profile.version)
                return Path(solcx.get_executable(profile.version))
            except Exception as e:
                raise CompilerInvocationError(f"Failed to install solc {profile.version}: {e}") from e

    def compile(self, request: CompileRequest, token: CancellationToken) -> CompilerOutput:
        """Run one compiler invocation.

        Raises:
            BuildCancelledError: If the token is cancelled before or during the run.
            CompilerInvocationError: On tool-level failure.
        """
        token.raise_if_cancelled()
        exe = self.executable(request.profile)
        payload = json.dumps(standard_json_input(request))
        cmd = [str(exe), "--standard-json"]
        logger.debug("Running %s for %d target(s)", " ".join(cmd), len(request.targets))

        proc = safe_popen(
            cmd,
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
        )
        token.register_process(proc)
        try:
            stdout, stderr = proc.communicate(payload, timeout=self._timeout)
        except subprocess.TimeoutExpired:
            kill_process_tree(proc.pid)
            proc.communicate()
            raise CompilerInvocationError(f"solc {request.profile.version} timed out after {self._timeout}s") from None
        finally:
            token.unregister_process(proc)

        token.raise_if_cancelled()

        if not stdout.strip():
            raise CompilerInvocationError(
                f"solc {request.profile.version} exited with code {proc.returncode} and no output: {stderr.strip()[:500]}"
            )
        try:
            data = json.loads(stdout)
        except json.JSONDecodeError as e:
            raise CompilerInvocationError(f"solc {request.profile.version} produced invalid JSON: {e}") from e

        return parse_standard_json_output(data, request.targets)
