"""Compiler version registry, source resolution and compiler backends."""

from .models import CompileRequest, CompilerOutput, ContractArtifact, Diagnostic, Severity
from .registry import CompilerProfile, CompilerRegistry
from .resolver import SourceUnit, VersionAssignment, group_by_version, resolve

__all__ = [
    "CompileRequest",
    "CompilerOutput",
    "CompilerProfile",
    "CompilerRegistry",
    "ContractArtifact",
    "Diagnostic",
    "Severity",
    "SourceUnit",
    "VersionAssignment",
    "group_by_version",
    "resolve",
]
