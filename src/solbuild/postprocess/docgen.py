"""Markdown documentation generator.

Renders one page per contract from its ABI and NatSpec (devdoc/userdoc)
under ``<path>/<unit identifier without .sol>/<Contract>.md`` and an
``index.md`` listing every page. Units whose identifier matches one of the
``except`` patterns are left out. Pages no longer produced by the build are
removed; ``clear`` wipes the whole output directory first.
"""

from __future__ import annotations

import logging
import re
import shutil
from pathlib import Path
from typing import Any, Iterable

from ..build.artifacts import atomic_write_text
from ..build.models import ProcessorOutput
from ..compilers.models import ContractArtifact
from ..config.project_config import PostProcessorConfig
from . import abi as abi_utils
from .base import PostProcessor, ProcessorContext

logger = logging.getLogger(__name__)


def _params_table(params: list[dict[str, Any]], docs: dict[str, Any]) -> list[str]:
    if not params:
        return []
    rows = ["| Name | Type | Description |", "| ---- | ---- | ----------- |"]
    for index, param in enumerate(params):
        name = param.get("name") or f"_{index}"
        description = str(docs.get(param.get("name", ""), docs.get(f"_{index}", ""))).replace("\n", " ")
        rows.append(f"| {name} | {abi_utils.canonical_type(param)} | {description} |")
    rows.append("")
    return rows


def _member_section(entry: dict[str, Any], dev: dict[str, Any], user: dict[str, Any], heading: str) -> list[str]:
    lines = [f"### {heading}", "", "```solidity", abi_utils.signature(entry), "```", ""]
    if user.get("notice"):
        lines += [user["notice"], ""]
    if dev.get("details"):
        lines += [f"_{dev['details']}_", ""]
    lines += _params_table(entry.get("inputs", []), dev.get("params", {}))
    outputs = entry.get("outputs", [])
    if outputs:
        lines += ["Returns:", ""]
        lines += _params_table(outputs, dev.get("returns", {}))
    return lines


def render_contract(contract: ContractArtifact) -> str:
    """Render the markdown page of one contract."""
    devdoc = contract.devdoc or {}
    userdoc = contract.userdoc or {}
    lines = [f"# {contract.name}", "", f"`{contract.source}`", ""]
    if devdoc.get("title"):
        lines += [f"**{devdoc['title']}**", ""]
    if devdoc.get("author"):
        lines += [f"Author: {devdoc['author']}", ""]
    if userdoc.get("notice"):
        lines += [userdoc["notice"], ""]
    if devdoc.get("details"):
        lines += [devdoc["details"], ""]

    sections = (
        ("Functions", "function", "methods"),
        ("Events", "event", "events"),
        ("Errors", "error", "errors"),
    )
    for title, kind, doc_key in sections:
        members = abi_utils.entries(contract.abi, kind)
        if not members:
            continue
        lines += [f"## {title}", ""]
        for entry in members:
            sig = abi_utils.signature(entry)
            dev = _doc_entry(devdoc.get(doc_key, {}), sig)
            user = _doc_entry(userdoc.get(doc_key, {}), sig)
            heading = entry.get("name", "")
            if kind == "function" and entry.get("stateMutability") not in (None, "nonpayable"):
                heading += f" ({entry['stateMutability']})"
            lines += _member_section(entry, dev, user, heading)
    return "\n".join(lines).rstrip() + "\n"


def _doc_entry(docs: dict[str, Any], sig: str) -> dict[str, Any]:
    # errors map to a list of doc entries (one per overload)
    entry = docs.get(sig, {})
    if isinstance(entry, list):
        entry = entry[0] if entry else {}
    return entry if isinstance(entry, dict) else {}


def is_excluded(identifier: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(p.search(identifier) for p in patterns)


class DocumentationGenerator(PostProcessor):
    """Generates markdown documentation from ABI and NatSpec."""

    def __init__(self, processor_config: PostProcessorConfig, exclude: Iterable[str] = (), clear: bool = False) -> None:
        super().__init__(processor_config)
        try:
            self.exclude = [re.compile(p) for p in exclude]
        except re.error as e:
            raise ValueError(f"Invalid docgen exclude pattern: {e}") from e
        self.clear = clear

    def run(self, context: ProcessorContext) -> ProcessorOutput:
        out_dir = self.output_location
        if self.clear and out_dir.exists():
            shutil.rmtree(out_dir)

        written: list[Path] = []
        pages: list[tuple[str, str]] = []
        for artifact, contract in context.artifacts.contracts():
            if is_excluded(artifact.identifier, self.exclude):
                continue
            unit_path = artifact.identifier.removesuffix(".sol")
            relative = f"{unit_path}/{contract.name}.md"
            path = out_dir / relative
            atomic_write_text(path, render_contract(contract))
            written.append(path)
            pages.append((contract.name, relative))

        index_lines = ["# Contracts", ""] + [f"- [{name}]({relative})" for name, relative in sorted(pages, key=lambda p: p[1])]
        index_path = out_dir / "index.md"
        atomic_write_text(index_path, "\n".join(index_lines) + "\n")
        written.append(index_path)

        removed = self._remove_stale(out_dir, set(written))
        detail = f"{len(pages)} page(s) in {out_dir}"
        if removed:
            detail += f", {removed} stale removed"
        return self.output(written, detail)

    @staticmethod
    def _remove_stale(out_dir: Path, keep: set[Path]) -> int:
        # Pages of deleted or newly excluded contracts.
        removed = 0
        for path in sorted(out_dir.rglob("*.md")):
            if path not in keep:
                logger.debug("Removing stale page %s", path)
                path.unlink()
                removed += 1
        for path in sorted(out_dir.rglob("*"), key=lambda p: len(p.parts), reverse=True):
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        return removed
