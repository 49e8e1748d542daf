"""Incremental compilation cache.

Tracks, per source unit, the hash of its import closure together with the
compiler version and settings it was built with. A unit whose entry still
matches (and whose artifact files are intact) is not recompiled.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from ..compilers.registry import CompilerProfile

logger = logging.getLogger(__name__)

CACHE_FILENAME = "solidity-files-cache.json"
CACHE_FORMAT = "solbuild-cache-1"


class BuildCache:
    """Persistent per-unit build cache.

    Thread-safe; the pipeline only mutates it from the main thread, but
    readers may run concurrently.
    """

    def __init__(self, cache_dir: Path):
        """Initialize the cache.

        Args:
            cache_dir: Directory holding ``solidity-files-cache.json``
        """
        self.cache_file = Path(cache_dir) / CACHE_FILENAME
        self.entries: dict[str, dict[str, Any]] = {}
        self.lock = threading.Lock()
        self._load_cache()

    def _load_cache(self) -> None:
        if not self.cache_file.exists():
            logger.debug(f"Cache file not found: {self.cache_file}")
            return
        try:
            with open(self.cache_file, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning(f"Failed to load cache from {self.cache_file}: {e}")
            return
        if not isinstance(data, dict) or data.get("_format") != CACHE_FORMAT:
            logger.info(f"Ignoring cache with unknown format: {self.cache_file}")
            return
        self.entries = dict(data.get("files", {}))
        logger.debug(f"Loaded cache with {len(self.entries)} entries from {self.cache_file}")

    def save(self) -> None:
        """Save the cache to disk atomically (temp file + rename)."""
        with self.lock:
            payload = {"_format": CACHE_FORMAT, "files": dict(sorted(self.entries.items()))}
        try:
            self.cache_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.cache_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, sort_keys=True)
            temp_file.replace(self.cache_file)
        except IOError as e:
            logger.error(f"Failed to save cache to {self.cache_file}: {e}")

    def lookup(self, identifier: str, closure_hash: str, profile: CompilerProfile) -> list[str] | None:
        """Contract names of a fresh entry, or None when the unit must be rebuilt."""
        with self.lock:
            entry = self.entries.get(identifier)
        if entry is None:
            return None
        if (
            entry.get("contentHash") != closure_hash
            or entry.get("solcVersion") != profile.version
            or entry.get("settingsHash") != profile.settings_hash()
        ):
            return None
        return list(entry.get("contracts", []))

    def update(self, identifier: str, closure_hash: str, profile: CompilerProfile, contracts: list[str]) -> None:
        with self.lock:
            self.entries[identifier] = {
                "contentHash": closure_hash,
                "solcVersion": profile.version,
                "settingsHash": profile.settings_hash(),
                "contracts": sorted(contracts),
            }

    def invalidate(self, identifier: str) -> None:
        with self.lock:
            self.entries.pop(identifier, None)

    def prune(self, current: set[str]) -> list[str]:
        """Drop entries for units that no longer exist."""
        with self.lock:
            stale = sorted(set(self.entries) - set(current))
            for identifier in stale:
                del self.entries[identifier]
        return stale

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()
        if self.cache_file.exists():
            self.cache_file.unlink()
