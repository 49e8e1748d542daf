"""SPDX license-header injector.

Prepends ``// SPDX-License-Identifier: <license>`` to every project source
that lacks one. Existing identifiers are replaced only when ``overwrite`` is
set. Applying the injector twice yields the same text as applying it once.
The orchestrator runs it ahead of compilation, so compiled artifacts and
the build cache always see the stamped text.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path

from ..build.artifacts import atomic_write_text
from ..build.models import ProcessorOutput
from ..config.project_config import PostProcessorConfig
from .base import PostProcessor, ProcessorContext

logger = logging.getLogger(__name__)

_SPDX_RE = re.compile(r"^[ \t]*//[ \t]*SPDX-License-Identifier:[ \t]*(\S+)[ \t]*$", re.MULTILINE)


def header_for(license_id: str) -> str:
    return f"// SPDX-License-Identifier: {license_id}"


def stamp(text: str, license_id: str, overwrite: bool) -> str:
    """Return ``text`` carrying exactly one SPDX header for ``license_id``."""
    match = _SPDX_RE.search(text)
    if match is None:
        return f"{header_for(license_id)}\n{text}"
    if match.group(1) == license_id or not overwrite:
        return text
    return text[: match.start()] + header_for(license_id) + text[match.end() :]


def package_license(root: Path) -> str | None:
    """The ``license`` field of the project's package.json, if any."""
    package_json = root / "package.json"
    if not package_json.is_file():
        return None
    try:
        with open(package_json, "r", encoding="utf-8") as f:
            value = json.load(f).get("license")
    except (OSError, json.JSONDecodeError, AttributeError) as e:
        logger.warning("Cannot read license from %s: %s", package_json, e)
        return None
    return str(value) if value else None


class LicenseHeaderInjector(PostProcessor):
    """Stamps SPDX identifiers into project sources."""

    rewrites_sources = True

    def __init__(self, processor_config: PostProcessorConfig, license_id: str | None = None, overwrite: bool = False) -> None:
        super().__init__(processor_config)
        self.license_id = license_id
        self.overwrite = overwrite

    def run(self, context: ProcessorContext) -> ProcessorOutput:
        license_id = self.license_id or package_license(context.config.root)
        if not license_id:
            logger.info("No SPDX license configured and none in package.json, leaving sources untouched")
            return self.output([], "no license configured")

        sources_dir = self.output_location
        changed: list[Path] = []
        for path in sorted(sources_dir.rglob("*.sol")):
            text = path.read_text(encoding="utf-8")
            stamped = stamp(text, license_id, self.overwrite)
            if stamped != text:
                atomic_write_text(path, stamped)
                changed.append(path)
                logger.debug("Stamped %s with %s", path, license_id)
        return self.output(changed, f"{len(changed)} source(s) stamped with {license_id}")
