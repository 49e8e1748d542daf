"""Artifact post-processors and their scheduling."""

from __future__ import annotations

from ..config.project_config import ProjectConfig
from .base import PostProcessor, ProcessorContext
from .coverage import CoverageInstrumenter
from .docgen import DocumentationGenerator
from .license import LicenseHeaderInjector
from .runner import PostProcessorRunner
from .typechain import TypeBindingGenerator


def build_processors(config: ProjectConfig) -> list[PostProcessor]:
    """Instantiate the built-in post-processors for a project, by ascending order."""
    processors: list[PostProcessor] = []
    for processor_config in config.processor_configs():
        if processor_config.name == "license":
            processors.append(LicenseHeaderInjector(processor_config, config.license.license, config.license.overwrite))
        elif processor_config.name == "typechain":
            processors.append(TypeBindingGenerator(processor_config, config.typechain.target))
        elif processor_config.name == "docgen":
            processors.append(DocumentationGenerator(processor_config, config.docgen.exclude, config.docgen.clear))
        elif processor_config.name == "coverage":
            processors.append(CoverageInstrumenter(processor_config, config.coverage.skip_files))
    return processors


__all__ = [
    "CoverageInstrumenter",
    "DocumentationGenerator",
    "LicenseHeaderInjector",
    "PostProcessor",
    "PostProcessorRunner",
    "ProcessorContext",
    "TypeBindingGenerator",
    "build_processors",
]
