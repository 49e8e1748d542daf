"""ABI helpers shared by the binding and documentation generators."""

from __future__ import annotations

import re
from typing import Any, Mapping

_ARRAY_SUFFIX_RE = re.compile(r"^(.*)\[(\d*)\]$")
_INT_RE = re.compile(r"^u?int(\d*)$")


def canonical_type(param: Mapping[str, Any]) -> str:
    """Canonical ABI type of a parameter; tuples expand to ``(t1,t2)``."""
    abi_type = str(param.get("type", ""))
    if abi_type.startswith("tuple"):
        inner = ",".join(canonical_type(c) for c in param.get("components", []))
        return f"({inner}){abi_type[len('tuple'):]}"
    return abi_type


def signature(entry: Mapping[str, Any]) -> str:
    """``name(type,...)`` signature of a function, event or error entry."""
    args = ",".join(canonical_type(p) for p in entry.get("inputs", []))
    return f"{entry.get('name', '')}({args})"


def entries(abi: list[Any], kind: str) -> list[dict[str, Any]]:
    """ABI entries of one kind (function/event/error/constructor...), sorted by signature."""
    found = [e for e in abi if isinstance(e, dict) and e.get("type", "function") == kind]
    return sorted(found, key=signature)


def overloaded_names(abi: list[Any]) -> set[str]:
    """Function names declared more than once."""
    seen: dict[str, int] = {}
    for entry in entries(abi, "function"):
        seen[entry["name"]] = seen.get(entry["name"], 0) + 1
    return {name for name, count in seen.items() if count > 1}


def is_read_only(entry: Mapping[str, Any]) -> bool:
    mutability = entry.get("stateMutability")
    if mutability is not None:
        return mutability in ("view", "pure")
    # solc < 0.5 ABI
    return bool(entry.get("constant", False))


def is_payable(entry: Mapping[str, Any]) -> bool:
    return entry.get("stateMutability") == "payable" or bool(entry.get("payable", False))


def ts_type(param: Mapping[str, Any], output: bool) -> str:
    """TypeScript type of an ABI parameter, following the ethers v5 mapping."""
    abi_type = str(param.get("type", ""))
    match = _ARRAY_SUFFIX_RE.match(abi_type)
    if match:
        element = dict(param)
        element["type"] = match.group(1)
        return f"{ts_type(element, output)}[]"
    if abi_type == "tuple":
        fields = [
            f"{c.get('name') or f'_{i}'}: {ts_type(c, output)}"
            for i, c in enumerate(param.get("components", []))
        ]
        return "{ " + "; ".join(fields) + " }"
    if abi_type == "address" or abi_type == "string":
        return "string"
    if abi_type == "bool":
        return "boolean"
    if abi_type.startswith("bytes"):
        return "string" if output else "BytesLike"
    int_match = _INT_RE.match(abi_type)
    if int_match:
        bits = int(int_match.group(1) or 256)
        if output:
            return "number" if bits <= 48 else "BigNumber"
        return "BigNumberish"
    return "any"
