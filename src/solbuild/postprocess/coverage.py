"""Coverage instrumenter.

Writes a copy of every project source with a probe call in front of each
statement inside function, modifier and constructor bodies, and a
``coverage-map.json`` mapping probe ids back to source lines. Each contract
gets a private no-op helper the probes call, so the instrumented tree
compiles with the same compiler versions as the original. Inline assembly
and free functions are left untouched.

Instrumented bytecode is only meaningful without the optimizer; the
orchestrator refuses to schedule this processor for optimized profiles.
"""

from __future__ import annotations

import bisect
import hashlib
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from semantic_version import Version

from ..build.artifacts import atomic_write_text
from ..build.models import ProcessorOutput
from ..config.project_config import PostProcessorConfig
from .base import PostProcessor, ProcessorContext

logger = logging.getLogger(__name__)

MAP_FILENAME = "coverage-map.json"
INSTRUMENTED_DIR = "instrumented"

_BODY_KEYWORDS = {"function", "constructor", "modifier", "fallback", "receive"}
_CONTAINER_KEYWORDS = {"contract", "library"}
_NO_PROBE_WORDS = {"else", "catch"}
_BLOCK_WORDS = {"else", "do", "unchecked", "try", "catch", "assembly"}
_CODE_KINDS = ("body", "block")

# Function-level "pure" arrived in 0.4.17.
_PURE_SINCE = Version("0.4.17")


@dataclass(frozen=True)
class Probe:
    id: int
    line: int
    contract: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "line": self.line, "contract": self.contract}


@dataclass
class InstrumentedSource:
    identifier: str
    text: str
    tag: str
    probes: list[Probe] = field(default_factory=list)


def unit_tag(identifier: str) -> str:
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:8]


def helper_mutability(version: str | None) -> str:
    if version is None:
        return "pure"
    return "pure" if Version(version) >= _PURE_SINCE else "constant"


class _Scanner:
    """Single pass over a Solidity source collecting probe and helper insertions."""

    def __init__(self, text: str, tag: str, mutability: str, first_id: int) -> None:
        self.text = text
        self.tag = tag
        self.mutability = mutability
        self.next_id = first_id
        self.insertions: list[tuple[int, str]] = []
        self.probes: list[Probe] = []
        self._newlines = [i for i, ch in enumerate(text) if ch == "\n"]
        self._stack: list[tuple[str, bool]] = []
        self._pending: str | None = None
        self._paren = 0
        self._at_start = False
        self._last_word = ""
        self._prev = ""
        self._expect_name = False
        self._contract_index = 0
        self._contract = ""
        self._helper = ""

    def _line_of(self, offset: int) -> int:
        return bisect.bisect_right(self._newlines, offset - 1) + 1

    @property
    def _top(self) -> str | None:
        return self._stack[-1][0] if self._stack else None

    def _probe(self, offset: int) -> None:
        probe = Probe(self.next_id, self._line_of(offset), self._contract)
        self.next_id += 1
        self.probes.append(probe)
        self.insertions.append((offset, f"{self._helper}({probe.id}); "))

    def _word(self, start: int) -> int:
        text = self.text
        end = start
        while end < len(text) and (text[end].isalnum() or text[end] in "_$"):
            end += 1
        word = text[start:end]
        top = self._top
        if self._expect_name:
            self._contract = word
            self._expect_name = False
        if self._paren == 0:
            if word in _CONTAINER_KEYWORDS and top is None:
                self._pending = "contract"
                self._expect_name = True
            elif word == "interface" and top is None:
                self._pending = "other"
            elif word in _BODY_KEYWORDS and top == "contract":
                self._pending = "body"
            elif word == "function" and top is None:
                self._pending = "free"
            elif word == "assembly" and top in _CODE_KINDS:
                self._pending = "assembly"
        self._last_word = word
        return end

    def _open(self, offset: int) -> None:
        top = self._top
        if self._paren > 0:
            kind = "args"
        elif self._pending == "free":
            kind = "other"
        elif self._pending is not None:
            kind = self._pending
        elif top == "assembly":
            kind = "assembly"
        elif top in _CODE_KINDS and self._prev == "w" and self._last_word not in _BLOCK_WORDS:
            # call options: addr.call{value: v}(...)
            kind = "args"
        elif top in _CODE_KINDS:
            kind = "block"
        else:
            kind = "other"
        self._stack.append((kind, kind == "block" and self._last_word == "do"))
        self._pending = None
        if kind == "contract":
            self._contract_index += 1
            self._helper = f"__cov_{self.tag}_{self._contract_index}"
            self.insertions.append((offset + 1, f" function {self._helper}(uint256) internal {self.mutability} {{}}"))
        if kind in _CODE_KINDS:
            self._at_start = True

    def _close(self) -> None:
        if not self._stack:
            return
        kind, was_do = self._stack.pop()
        if kind != "args" and self._top in _CODE_KINDS:
            # "} while (...);" belongs to the do statement
            self._at_start = not was_do

    def scan(self) -> None:
        text = self.text
        n = len(text)
        i = 0
        while i < n:
            ch = text[i]
            if text.startswith("//", i):
                end = text.find("\n", i)
                i = n if end < 0 else end
                continue
            if text.startswith("/*", i):
                end = text.find("*/", i + 2)
                i = n if end < 0 else end + 2
                continue
            if ch.isspace():
                i += 1
                continue

            if self._at_start and self._paren == 0 and self._top in _CODE_KINDS and ch not in "{};":
                self._at_start = False
                is_word = ch.isalpha() or ch in "_$"
                word_end = i
                while is_word and word_end < n and (text[word_end].isalnum() or text[word_end] in "_$"):
                    word_end += 1
                if text[i:word_end] not in _NO_PROBE_WORDS:
                    self._probe(i)

            if ch in "\"'":
                j = i + 1
                while j < n and text[j] != ch:
                    j += 2 if text[j] == "\\" else 1
                i = j + 1
                self._prev = ch
                continue
            if ch.isalpha() or ch in "_$":
                i = self._word(i)
                self._prev = "w"
                continue
            if ch == "(":
                self._paren += 1
            elif ch == ")":
                self._paren = max(0, self._paren - 1)
            elif ch == "{":
                self._open(i)
            elif ch == "}":
                self._close()
            elif ch == ";" and self._paren == 0:
                self._pending = None
                if self._top in _CODE_KINDS:
                    self._at_start = True
            self._prev = ch
            i += 1

    def render(self) -> str:
        out: list[str] = []
        previous = 0
        for offset, snippet in sorted(self.insertions, key=lambda item: item[0]):
            out.append(self.text[previous:offset])
            out.append(snippet)
            previous = offset
        out.append(self.text[previous:])
        return "".join(out)


def instrument(identifier: str, text: str, version: str | None = None, first_id: int = 1) -> InstrumentedSource:
    """Instrument one source.

    Args:
        identifier: Unit identifier (used to derive the helper tag).
        text: Original source text.
        version: Compiler version assigned to the unit.
        first_id: Id of the first probe.

    Returns:
        InstrumentedSource; line numbers of the original are preserved.
    """
    tag = unit_tag(identifier)
    scanner = _Scanner(text, tag, helper_mutability(version), first_id)
    scanner.scan()
    return InstrumentedSource(identifier=identifier, text=scanner.render(), tag=tag, probes=scanner.probes)


def is_skipped(identifier: str, sources_dir: str, skip_files: Iterable[str]) -> bool:
    """Skip entries are paths relative to the sources directory (file or directory prefix)."""
    prefix = sources_dir.strip("./").rstrip("/") + "/"
    relative = identifier[len(prefix):] if identifier.startswith(prefix) else identifier
    return any(relative == s.strip("/") or relative.startswith(s.strip("/") + "/") for s in skip_files)


class CoverageInstrumenter(PostProcessor):
    """Writes instrumented copies of the project sources and a probe map."""

    def __init__(self, processor_config: PostProcessorConfig, skip_files: Iterable[str] = ()) -> None:
        super().__init__(processor_config)
        self.skip_files = tuple(skip_files)

    def run(self, context: ProcessorContext) -> ProcessorOutput:
        out_dir = self.output_location
        target_dir = out_dir / INSTRUMENTED_DIR
        paths = context.config.paths
        written: list[Path] = []
        coverage_map: dict[str, Any] = {}
        next_id = 1
        instrumented = 0

        for assignment in sorted(context.assignments, key=lambda a: a.identifier):
            context.token.raise_if_cancelled()
            unit = assignment.source_unit
            source_path = unit.path or paths.root / unit.identifier
            text = Path(source_path).read_text(encoding="utf-8")
            destination = target_dir / unit.identifier

            if is_skipped(unit.identifier, paths.sources, self.skip_files):
                atomic_write_text(destination, text)
                written.append(destination)
                continue

            result = instrument(unit.identifier, text, assignment.version, first_id=next_id)
            next_id += len(result.probes)
            atomic_write_text(destination, result.text)
            written.append(destination)
            instrumented += 1
            coverage_map[unit.identifier] = {
                "tag": result.tag,
                "version": assignment.version,
                "probes": [p.to_dict() for p in result.probes],
            }

        map_path = out_dir / MAP_FILENAME
        atomic_write_text(map_path, json.dumps(coverage_map, indent=2, sort_keys=True) + "\n")
        written.append(map_path)
        return self.output(written, f"{instrumented} source(s) instrumented with {next_id - 1} probe(s)")
