"""Entity scaffolding orchestrator.

Takes an ``EntityModel`` and a ``GeneratorConfig`` and writes every CRUD
artefact of one entity into the web and script projects, following the fixed
``Modules/<Module>/<Class>/`` folder convention.  Existing files are backed up
and merged, and every file is registered in its project manifest.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path, PurePath, PureWindowsPath
from typing import Any, Optional

from entitygen.config import ConfigError, GeneratorConfig
from entitygen.schema.models import EntityModel
from entitygen.utils import console

from .merge import MergeStatus, MergeTool, create_directory_or_backup
from .project_file import add_file_to_project, to_project_path
from .templates import TemplateRenderer


# ---------------------------------------------------------------------------
# Manifest locations (relative to their project folder)
# ---------------------------------------------------------------------------

# legacy form contexts manifest in the script project
FORM_CONTEXTS = r"Imports\FormContexts\FormContexts.tt"
# legacy service contracts manifest in the script project
SERVICE_CONTRACTS = r"Imports\ServiceContracts\ServiceContracts.tt"
# newer server imports manifest in the script project
SERVER_IMPORTS = r"Imports\ServerImports\ServerImports.tt"
# server typings manifest in the web project
SERVER_TYPINGS = r"Modules\Common\Imports\ServerTypings\ServerTypings.tt"

SITE_LESS = r"Content\site\site.less"

APPENDED_BANNER = (
    "/* ------------------------------------------------------------------------- */",
    "/* APPENDED BY CODE GENERATOR, MOVE TO CORRECT PLACE AND REMOVE THIS COMMENT */",
    "/* ------------------------------------------------------------------------- */",
)

_STATUS_STYLES: dict[MergeStatus, str] = {
    MergeStatus.CREATED: "[green]+[/green]",
    MergeStatus.UNCHANGED: "[dim]=[/dim]",
    MergeStatus.MERGED: "[cyan]~[/cyan]",
    MergeStatus.BACKUP_KEPT: "[yellow]![/yellow]",
    MergeStatus.APPENDED: "[green]>[/green]",
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class GeneratedFile:
    """One file written by the generator."""

    path: Path
    relative_path: str
    project: str
    status: MergeStatus
    backup: Optional[Path] = None
    registered: bool = False


@dataclass
class GenerationResult:
    """Everything a generator run produced, in write order."""

    files: list[GeneratedFile] = field(default_factory=list)

    def by_status(self, status: MergeStatus) -> list[GeneratedFile]:
        return [f for f in self.files if f.status == status]

    @property
    def relative_paths(self) -> list[str]:
        return [f.relative_path for f in self.files]


# ---------------------------------------------------------------------------
# Main generator
# ---------------------------------------------------------------------------


class EntityCodeGenerator:
    """Writes the CRUD artefacts of one entity.

    Web project (``Modules\\<M>\\<C>\\``): row, columns, form, repository,
    endpoint, page controller, index view and, with ``generate_ts_code``,
    the TypeScript grid and dialog.  A block is appended to the shared
    ``site.less``.

    Script project: imported row/service/form classes (``generate_ss_imports``)
    and, without ``generate_ts_code``, the grid and dialog classes.

    Web project typings (``generate_ts_typings``): row/service/form
    declarations under ``Modules\\Common\\Imports\\ServerTypings``.
    """

    def __init__(
        self,
        model: EntityModel,
        config: GeneratorConfig,
        *,
        base_dir: str | Path | None = None,
        merge_tool: MergeTool | None = None,
        renderer: TemplateRenderer | None = None,
        verbose: bool = True,
    ) -> None:
        self.model = model
        self.config = config
        self.renderer = renderer or TemplateRenderer()
        self.merge_tool = merge_tool or MergeTool.discover(config.kdiff3_path)
        self.verbose = verbose

        base = Path(base_dir) if base_dir else Path.cwd()
        if not config.web_project_file:
            raise ConfigError("web_project_file is not configured")
        self.web_project = (base / config.web_project_file).resolve()
        self.web_path = self.web_project.parent

        needs_script = config.generate_ss_imports or not config.generate_ts_code
        if config.script_project_file:
            self.script_project: Optional[Path] = (base / config.script_project_file).resolve()
            self.script_path: Optional[Path] = self.script_project.parent
        elif needs_script:
            raise ConfigError(
                "script_project_file is not configured but script files are "
                "requested (generate_ss_imports, or generate_ts_code is off)"
            )
        else:
            self.script_project = None
            self.script_path = None

        self.result = GenerationResult()

    # -- Public API --------------------------------------------------------

    async def run(self) -> GenerationResult:
        """Generate every artefact, in a fixed order.

        Returns:
            The files written, with what happened to each.
        """
        self.result = GenerationResult()
        if self.script_path is not None:
            await asyncio.to_thread(self.script_path.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(self.web_path.mkdir, parents=True, exist_ok=True)

        await self.generate_row()
        await self.generate_css()
        await self.generate_columns()
        await self.generate_form()
        await self.generate_repository()
        await self.generate_endpoint()
        await self.generate_page_controller()
        await self.generate_page_index()

        if self.config.generate_ss_imports:
            await self.generate_script_row_ss()
            await self.generate_script_service_ss()
            await self.generate_script_form_ss()

        if self.config.generate_ts_typings:
            await self.generate_script_row_ts()
            await self.generate_script_service_ts()
            await self.generate_script_form_ts()

        if self.config.generate_ts_code:
            await self.generate_script_grid_ts()
            await self.generate_script_dialog_ts()
        else:
            await self.generate_script_grid_ss()
            await self.generate_script_dialog_ss()

        return self.result

    # -- Path helpers ------------------------------------------------------

    def module_file(self, file_name: str, modules_root: bool = True) -> str:
        """``Modules\\<M>\\<C>\\<file>`` (or without ``Modules`` for the script project)."""
        parts = [self.model.module_or_namespace, self.model.class_name, file_name]
        if modules_root:
            parts.insert(0, "Modules")
        return str(PureWindowsPath(*parts))

    def import_file(self, file_name: str, manifest: str) -> str:
        """``[<Module>.]<file>`` placed next to *manifest*."""
        target = f"{self.model.module}.{file_name}" if self.model.module else file_name
        return str(PureWindowsPath(manifest).parent / target)

    def script_file_exists(self, relative_file: str) -> bool:
        """True when the script project and *relative_file* inside it both exist."""
        if self.script_project is None or not self.script_project.is_file():
            return False
        return _disk_path(self.script_project.parent, relative_file).is_file()

    def script_manifest(self, legacy: str) -> str:
        """Pick the manifest script imports depend upon.

        The newer server imports manifest wins when it exists, or when the
        legacy manifest does not; otherwise the legacy one is kept.
        """
        if self.script_file_exists(SERVER_IMPORTS) or not self.script_file_exists(legacy):
            return SERVER_IMPORTS
        return legacy

    def _context(self) -> dict[str, Any]:
        return {"model": self.model, "config": self.config}

    # -- Writers -----------------------------------------------------------

    async def create_new_site_web_file(
        self, code: str, relative_file: str, dependent_upon: str | None = None
    ) -> GeneratedFile:
        return await self._create_file(
            self.web_project, code, relative_file, dependent_upon, project="web"
        )

    async def create_new_site_script_file(
        self, code: str, relative_file: str, dependent_upon: str | None = None
    ) -> GeneratedFile:
        if self.script_project is None:
            raise ConfigError("script_project_file is not configured")
        return await self._create_file(
            self.script_project, code, relative_file, dependent_upon, project="script"
        )

    async def _create_file(
        self,
        project_file: Path,
        code: str,
        relative_file: str,
        dependent_upon: str | None,
        project: str,
    ) -> GeneratedFile:
        """Backup, write, merge, register."""
        path = _disk_path(project_file.parent, relative_file)
        backup = await asyncio.to_thread(create_directory_or_backup, path)
        await asyncio.to_thread(_write_generated, path, code)
        status = await self.merge_tool.merge_changes(backup, path)
        registered = await asyncio.to_thread(
            add_file_to_project, project_file, relative_file, dependent_upon
        )
        if status == MergeStatus.UNCHANGED:
            backup = None

        generated = GeneratedFile(
            path=path,
            relative_path=to_project_path(relative_file),
            project=project,
            status=status,
            backup=backup,
            registered=registered,
        )
        self._report(generated)
        self.result.files.append(generated)
        return generated

    def _report(self, generated: GeneratedFile) -> None:
        if not self.verbose:
            return
        marker = _STATUS_STYLES.get(generated.status, " ")
        line = f"  {marker} [{generated.project}] {generated.relative_path}"
        if generated.status == MergeStatus.BACKUP_KEPT and generated.backup:
            line += f" [yellow](no merge tool, previous version kept as {generated.backup.name})[/yellow]"
        console.print(line)

    # -- Web project -------------------------------------------------------

    async def generate_row(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Row.cs.j2", self._context()),
            self.module_file(f"{self.model.row_class_name}.cs"),
        )

    async def generate_css(self) -> GeneratedFile:
        """Append the entity's styles to the shared ``site.less``.

        The file is never backed up or merged; the block is appended after a
        banner asking the developer to move it.
        """
        path = _disk_path(self.web_path, SITE_LESS)
        code = self.renderer.render("web/site.less.j2", self._context())
        await asyncio.to_thread(_append_css, path, code)
        registered = await asyncio.to_thread(add_file_to_project, self.web_project, SITE_LESS)

        generated = GeneratedFile(
            path=path,
            relative_path=SITE_LESS,
            project="web",
            status=MergeStatus.APPENDED,
            registered=registered,
        )
        self._report(generated)
        self.result.files.append(generated)
        return generated

    async def generate_columns(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Columns.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Columns.cs"),
        )

    async def generate_form(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Form.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Form.cs"),
        )

    async def generate_repository(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Repository.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Repository.cs"),
        )

    async def generate_endpoint(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Endpoint.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Endpoint.cs"),
        )

    async def generate_page_controller(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Page.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Page.cs"),
        )

    async def generate_page_index(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Index.cshtml.j2", self._context()),
            self.module_file(f"{self.model.class_name}Index.cshtml"),
        )

    # -- Script project imports --------------------------------------------

    async def generate_script_row_ss(self) -> GeneratedFile:
        manifest = self.script_manifest(SERVICE_CONTRACTS)
        return await self.create_new_site_script_file(
            self.renderer.render("script/Row.cs.j2", self._context()),
            self.import_file(f"{self.model.row_class_name}.cs", manifest),
            manifest,
        )

    async def generate_script_service_ss(self) -> GeneratedFile:
        manifest = self.script_manifest(SERVICE_CONTRACTS)
        return await self.create_new_site_script_file(
            self.renderer.render("script/Service.cs.j2", self._context()),
            self.import_file(f"{self.model.class_name}Service.cs", manifest),
            manifest,
        )

    async def generate_script_form_ss(self) -> GeneratedFile:
        manifest = self.script_manifest(FORM_CONTEXTS)
        return await self.create_new_site_script_file(
            self.renderer.render("script/Form.cs.j2", self._context()),
            self.import_file(f"{self.model.class_name}Form.cs", manifest),
            manifest,
        )

    # -- Web project typings -----------------------------------------------

    async def generate_script_row_ts(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("typings/Row.ts.j2", self._context()),
            self.import_file(f"{self.model.row_class_name}.ts", SERVER_TYPINGS),
            SERVER_TYPINGS,
        )

    async def generate_script_service_ts(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("typings/Service.ts.j2", self._context()),
            self.import_file(f"{self.model.class_name}Service.ts", SERVER_TYPINGS),
            SERVER_TYPINGS,
        )

    async def generate_script_form_ts(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("typings/Form.ts.j2", self._context()),
            self.import_file(f"{self.model.class_name}Form.ts", SERVER_TYPINGS),
            SERVER_TYPINGS,
        )

    # -- Grid & dialog -----------------------------------------------------

    async def generate_script_grid_ss(self) -> GeneratedFile:
        return await self.create_new_site_script_file(
            self.renderer.render("script/Grid.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Grid.cs", modules_root=False),
        )

    async def generate_script_dialog_ss(self) -> GeneratedFile:
        return await self.create_new_site_script_file(
            self.renderer.render("script/Dialog.cs.j2", self._context()),
            self.module_file(f"{self.model.class_name}Dialog.cs", modules_root=False),
        )

    async def generate_script_grid_ts(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Grid.ts.j2", self._context()),
            self.module_file(f"{self.model.class_name}Grid.ts"),
        )

    async def generate_script_dialog_ts(self) -> GeneratedFile:
        return await self.create_new_site_web_file(
            self.renderer.render("web/Dialog.ts.j2", self._context()),
            self.module_file(f"{self.model.class_name}Dialog.ts"),
        )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _disk_path(root: Path, relative_file: str | PurePath) -> Path:
    """Join a backslash manifest path onto a real folder."""
    return root.joinpath(*PureWindowsPath(str(relative_file)).parts)


def _write_generated(path: Path, content: str) -> None:
    """Write generated source as UTF-8 with BOM and CRLF line endings."""
    path.parent.mkdir(parents=True, exist_ok=True)
    normalized = content.replace("\r\n", "\n")
    path.write_text(normalized, encoding="utf-8-sig", newline="\r\n")


def _append_css(path: Path, code: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.is_file():
        path.write_text("\n", encoding="utf-8-sig", newline="\r\n")

    block = "\n\n" + "\n".join(APPENDED_BANNER) + "\n" + code.replace("\r\n", "\n")
    with path.open("a", encoding="utf-8", newline="\r\n") as fh:
        fh.write(block)
