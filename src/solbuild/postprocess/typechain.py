"""TypeScript binding generator (ethers v5 target).

Writes one declaration module per contract under
``<outDir>/<unit identifier>/<Contract>.ts`` plus an ``index.ts`` re-exporting
every binding. Files from earlier runs that no longer correspond to a
contract are removed.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..build.artifacts import atomic_write_text
from ..build.models import ProcessorOutput
from ..compilers.models import ContractArtifact
from ..config.project_config import PostProcessorConfig
from . import abi as abi_utils
from .base import PostProcessor, ProcessorContext

logger = logging.getLogger(__name__)

SUPPORTED_TARGETS = ("ethers-v5",)
HEADER = "/* Autogenerated file. Do not edit manually. */\n/* eslint-disable */\n"
_RESERVED = {"break", "case", "class", "const", "default", "delete", "do", "else", "enum", "export", "function", "in", "new", "return", "switch", "this", "var", "with"}


def _param_name(param: dict[str, Any], index: int) -> str:
    name = param.get("name") or f"arg{index}"
    return f"_{name}" if name in _RESERVED else name


def _inputs(entry: dict[str, Any]) -> list[str]:
    return [f"{_param_name(p, i)}: {abi_utils.ts_type(p, output=False)}" for i, p in enumerate(entry.get("inputs", []))]


def _overrides(entry: dict[str, Any]) -> str:
    if abi_utils.is_read_only(entry):
        return "overrides?: CallOverrides"
    if abi_utils.is_payable(entry):
        return "overrides?: PayableOverrides & { from?: string }"
    return "overrides?: Overrides & { from?: string }"


def _outputs(entry: dict[str, Any], as_tuple: bool) -> str:
    if not abi_utils.is_read_only(entry):
        return "ContractTransaction"
    outputs = entry.get("outputs", [])
    types = [abi_utils.ts_type(o, output=True) for o in outputs]
    if as_tuple:
        return f"[{', '.join(types)}]"
    if not outputs:
        return "void"
    if len(outputs) == 1:
        return types[0]
    named = [f"{o['name']}: {t}" for o, t in zip(outputs, types) if o.get("name")]
    if named:
        return f"[{', '.join(types)}] & {{ {'; '.join(named)} }}"
    return f"[{', '.join(types)}]"


def render_contract(contract: ContractArtifact) -> str:
    """Render the ethers v5 binding module of one contract."""
    functions = abi_utils.entries(contract.abi, "function")
    overloaded = abi_utils.overloaded_names(contract.abi)
    events = abi_utils.entries(contract.abi, "event")

    def key(entry: dict[str, Any]) -> str:
        return f'"{abi_utils.signature(entry)}"' if entry["name"] in overloaded else entry["name"]

    lines = [HEADER]
    lines.append(
        "import type {\n  BaseContract,\n  BigNumber,\n  BigNumberish,\n  BytesLike,\n  CallOverrides,\n"
        '  ContractTransaction,\n  Overrides,\n  PayableOverrides,\n} from "ethers";\n'
    )
    lines.append(f"export interface {contract.name} extends BaseContract {{")
    lines.append("  functions: {")
    for entry in functions:
        params = ", ".join(_inputs(entry) + [_overrides(entry)])
        lines.append(f"    {key(entry)}({params}): Promise<{_outputs(entry, as_tuple=True)}>;")
    lines.append("  };")
    lines.append("")
    for entry in functions:
        params = ", ".join(_inputs(entry) + [_overrides(entry)])
        lines.append(f"  {key(entry)}({params}): Promise<{_outputs(entry, as_tuple=False)}>;")
    lines.append("}")
    lines.append("")
    if events:
        names = sorted({e["name"] for e in events})
        lines.append(f"export type {contract.name}EventName = {' | '.join(json.dumps(n) for n in names)};")
        lines.append("")
    abi_text = json.dumps(contract.abi, indent=2, sort_keys=True)
    lines.append(f"export const {contract.name}Abi = {abi_text} as const;")
    lines.append("")
    return "\n".join(lines)


def _module_path(identifier: str, contract_name: str) -> str:
    return f"{identifier}/{contract_name}"


def render_index(modules: list[tuple[str, str]]) -> str:
    """Render ``index.ts`` for (contract name, module path) pairs.

    Contract names defined in more than one unit are exported under an
    alias derived from the unit path.
    """
    counts: dict[str, int] = {}
    for name, _ in modules:
        counts[name] = counts.get(name, 0) + 1
    lines = [HEADER]
    for name, module in sorted(modules, key=lambda m: m[1]):
        if counts[name] > 1:
            alias = "".join(ch if ch.isalnum() else "_" for ch in module)
            lines.append(f'export type {{ {name} as {alias} }} from "./{module}";')
        else:
            lines.append(f'export type {{ {name} }} from "./{module}";')
    lines.append("")
    return "\n".join(lines)


class TypeBindingGenerator(PostProcessor):
    """Generates ethers v5 TypeScript bindings for every contract with an ABI."""

    def __init__(self, processor_config: PostProcessorConfig, target: str = "ethers-v5") -> None:
        super().__init__(processor_config)
        self.target = target

    def run(self, context: ProcessorContext) -> ProcessorOutput:
        if self.target not in SUPPORTED_TARGETS:
            raise ValueError(f"Unsupported binding target '{self.target}' (supported: {', '.join(SUPPORTED_TARGETS)})")

        out_dir = self.output_location
        written: list[Path] = []
        modules: list[tuple[str, str]] = []
        for artifact, contract in context.artifacts.contracts():
            if not contract.abi:
                continue
            module = _module_path(artifact.identifier, contract.name)
            path = out_dir / f"{module}.ts"
            self._write_if_changed(path, render_contract(contract))
            written.append(path)
            modules.append((contract.name, module))

        index_path = out_dir / "index.ts"
        self._write_if_changed(index_path, render_index(modules))
        written.append(index_path)

        removed = self._remove_stale(out_dir, set(written))
        detail = f"{len(modules)} binding(s) in {out_dir}"
        if removed:
            detail += f", {removed} stale removed"
        return self.output(written, detail)

    @staticmethod
    def _write_if_changed(path: Path, text: str) -> None:
        if path.is_file() and path.read_text(encoding="utf-8") == text:
            return
        atomic_write_text(path, text)

    @staticmethod
    def _remove_stale(out_dir: Path, keep: set[Path]) -> int:
        removed = 0
        for path in sorted(out_dir.rglob("*.ts")):
            if path not in keep:
                logger.debug("Removing stale binding %s", path)
                path.unlink()
                removed += 1
        for path in sorted(out_dir.rglob("*"), key=lambda p: len(p.parts), reverse=True):
            if path.is_dir() and not any(path.iterdir()):
                path.rmdir()
        return removed
