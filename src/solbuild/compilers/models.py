"""Data models exchanged with the compiler backend.

Defines:
- Severity / Diagnostic: structured compiler diagnostics
- ContractArtifact: compiled output for one contract
- CompileRequest: one batch handed to the compiler (single version)
- CompilerOutput: parsed result of one compiler invocation
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .registry import CompilerProfile

# Unlinked library placeholders: __$<34 hex>$__ (>=0.5) or __<36 chars> (<0.5)
_LINK_PLACEHOLDER_RE = re.compile(r"__.{36}__")


class Severity(Enum):
    """Severity of a compiler diagnostic."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class Diagnostic:
    """A single structured compiler diagnostic.

    Attributes:
        severity: error / warning / info
        message: Short message
        source: Identifier of the source the diagnostic points at, if any
        formatted: Compiler-formatted message with source excerpt
        error_type: Compiler error type (e.g. "ParserError", "TypeError")
        error_code: Numeric error code (solc >= 0.6), if any
    """

    severity: Severity
    message: str
    source: str | None = None
    formatted: str = ""
    error_type: str = ""
    error_code: str | None = None

    @property
    def is_error(self) -> bool:
        return self.severity == Severity.ERROR

    def format(self) -> str:
        """Format as a single human-readable line."""
        location = f"{self.source}: " if self.source else ""
        kind = f"{self.error_type}: " if self.error_type else ""
        return f"[{self.severity.value.upper()}] {location}{kind}{self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "message": self.message,
            "source": self.source,
            "formatted": self.formatted,
            "error_type": self.error_type,
            "error_code": self.error_code,
        }

    @classmethod
    def from_solc(cls, data: dict[str, Any]) -> "Diagnostic":
        """Build from an entry of solc's standard-JSON ``errors`` array."""
        severity_text = str(data.get("severity", "error")).lower()
        try:
            severity = Severity(severity_text)
        except ValueError:
            severity = Severity.ERROR
        location = data.get("sourceLocation") or {}
        return cls(
            severity=severity,
            message=str(data.get("message", "")),
            source=location.get("file"),
            formatted=str(data.get("formattedMessage", "")),
            error_type=str(data.get("type", "")),
            error_code=data.get("errorCode"),
        )

    @classmethod
    def tool_failure(cls, message: str) -> "Diagnostic":
        """Diagnostic for a tool-level failure (crash, bad output, missing binary)."""
        return cls(severity=Severity.ERROR, message=message, error_type="CompilerInvocationError")


def hex_to_bytes(value: str) -> bytes:
    """Decode compiler hex output; unlinked library placeholders become zero bytes."""
    text = value[2:] if value.startswith("0x") else value
    text = _LINK_PLACEHOLDER_RE.sub("0" * 40, text)
    return bytes.fromhex(text)


@dataclass(frozen=True)
class ContractArtifact:
    """Compiled output of one contract.

    Attributes:
        name: Contract name
        source: Identifier of the defining source unit
        abi: ABI descriptor (list of JSON entries)
        bytecode: Creation bytecode
        deployed_bytecode: Runtime bytecode
        metadata: Compiler metadata (debug metadata)
        devdoc: NatSpec developer documentation
        userdoc: NatSpec user documentation
        gas_estimates: Compiler gas estimates
        link_references: Unlinked library references in the creation bytecode
    """

    name: str
    source: str
    abi: list[Any]
    bytecode: bytes
    deployed_bytecode: bytes = b""
    metadata: dict[str, Any] = field(default_factory=dict)
    devdoc: dict[str, Any] = field(default_factory=dict)
    userdoc: dict[str, Any] = field(default_factory=dict)
    gas_estimates: dict[str, Any] = field(default_factory=dict)
    link_references: dict[str, Any] = field(default_factory=dict)

    @property
    def is_deployable(self) -> bool:
        """Interfaces and abstract contracts compile to empty bytecode."""
        return bool(self.bytecode)

    def creation_gas(self) -> int | None:
        """Total creation gas estimate, when the compiler produced a finite one."""
        creation = self.gas_estimates.get("creation") or {}
        total = creation.get("totalCost")
        if total is None or total == "infinite":
            return None
        try:
            return int(total)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contractName": self.name,
            "sourceName": self.source,
            "abi": self.abi,
            "bytecode": "0x" + self.bytecode.hex(),
            "deployedBytecode": "0x" + self.deployed_bytecode.hex(),
            "metadata": self.metadata,
            "devdoc": self.devdoc,
            "userdoc": self.userdoc,
            "gasEstimates": self.gas_estimates,
            "linkReferences": self.link_references,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContractArtifact":
        return cls(
            name=data["contractName"],
            source=data["sourceName"],
            abi=data.get("abi", []),
            bytecode=hex_to_bytes(data.get("bytecode", "0x")),
            deployed_bytecode=hex_to_bytes(data.get("deployedBytecode", "0x")),
            metadata=data.get("metadata", {}),
            devdoc=data.get("devdoc", {}),
            userdoc=data.get("userdoc", {}),
            gas_estimates=data.get("gasEstimates", {}),
            link_references=data.get("linkReferences", {}),
        )


@dataclass(frozen=True)
class CompileRequest:
    """One compiler invocation: a single profile over a batch of units.

    Attributes:
        profile: Compiler profile for every unit in the batch
        targets: Identifiers whose outputs are wanted
        sources: Identifier -> source text for targets and their imports
        remappings: Import remappings passed to the compiler
    """

    profile: CompilerProfile
    targets: tuple[str, ...]
    sources: dict[str, str]
    remappings: tuple[str, ...] = ()


@dataclass
class CompilerOutput:
    """Parsed compiler result.

    Attributes:
        contracts: Source identifier -> list of contracts defined in it
        diagnostics: All diagnostics reported by the compiler
    """

    contracts: dict[str, list[ContractArtifact]] = field(default_factory=dict)
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def errors(self) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.is_error]

    def diagnostics_for(self, identifier: str) -> list[Diagnostic]:
        return [d for d in self.diagnostics if d.source == identifier]

    def failed_sources(self) -> set[str]:
        """Sources with at least one error diagnostic attributed to them."""
        return {d.source for d in self.errors if d.source is not None}
