"""entitygen scaffolder -- writes the CRUD files of one entity.

Quick usage::

    from entitygen.scaffolder import EntityCodeGenerator

    generator = EntityCodeGenerator(model, config)
    result = await generator.run()
"""

from entitygen.scaffolder.generator import (
    EntityCodeGenerator,
    GeneratedFile,
    GenerationResult,
)
from entitygen.scaffolder.merge import MergeError, MergeStatus, MergeTool
from entitygen.scaffolder.project_file import ProjectFileError, add_file_to_project
from entitygen.scaffolder.templates import TemplateRenderer

__all__ = [
    "EntityCodeGenerator",
    "GeneratedFile",
    "GenerationResult",
    "MergeError",
    "MergeStatus",
    "MergeTool",
    "ProjectFileError",
    "TemplateRenderer",
    "add_file_to_project",
]
