"""Tests for the entity code generator.

Covers:
- Files written for each flag combination and their folder layout
- Choice between the newer and legacy script import manifests
- Registration in the web and script project files
- Backups, merges and the site.less append on regeneration
- Output encoding (UTF-8 BOM, CRLF)
- Configuration errors
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from entitygen.config import ConfigError, GeneratorConfig
from entitygen.scaffolder.generator import (
    APPENDED_BANNER,
    FORM_CONTEXTS,
    SERVER_IMPORTS,
    SERVICE_CONTRACTS,
    EntityCodeGenerator,
)
from entitygen.scaffolder.merge import MergeStatus, MergeTool
from entitygen.schema.models import EntityModel

pytestmark = pytest.mark.unit

WEB_FILES = [
    r"Modules\Northwind\Order\OrderRow.cs",
    r"Content\site\site.less",
    r"Modules\Northwind\Order\OrderColumns.cs",
    r"Modules\Northwind\Order\OrderForm.cs",
    r"Modules\Northwind\Order\OrderRepository.cs",
    r"Modules\Northwind\Order\OrderEndpoint.cs",
    r"Modules\Northwind\Order\OrderPage.cs",
    r"Modules\Northwind\Order\OrderIndex.cshtml",
]

SS_IMPORT_FILES = [
    r"Imports\ServerImports\Northwind.OrderRow.cs",
    r"Imports\ServerImports\Northwind.OrderService.cs",
    r"Imports\ServerImports\Northwind.OrderForm.cs",
]

TS_TYPING_FILES = [
    r"Modules\Common\Imports\ServerTypings\Northwind.OrderRow.ts",
    r"Modules\Common\Imports\ServerTypings\Northwind.OrderService.ts",
    r"Modules\Common\Imports\ServerTypings\Northwind.OrderForm.ts",
]


def _make_generator(model, config, base_dir, merge_tool=None) -> EntityCodeGenerator:
    return EntityCodeGenerator(
        model,
        config,
        base_dir=base_dir,
        merge_tool=merge_tool or MergeTool(None),
        verbose=False,
    )


def _web_dir(solution_dir: Path) -> Path:
    return solution_dir / "Northwind" / "Northwind.Web"


def _script_dir(solution_dir: Path) -> Path:
    return solution_dir / "Northwind" / "Northwind.Script"


def _read(path: Path) -> str:
    return path.read_bytes().decode("utf-8-sig")


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_requires_web_project(self, order_model: EntityModel, tmp_path: Path):
        config = GeneratorConfig(kdiff3_path=None, script_project_file="S/S.csproj")
        with pytest.raises(ConfigError, match="web_project_file"):
            _make_generator(order_model, config, tmp_path)

    def test_requires_script_project_for_imports(self, order_model: EntityModel, tmp_path: Path):
        config = GeneratorConfig(kdiff3_path=None, web_project_file="W/W.csproj")
        with pytest.raises(ConfigError, match="script_project_file"):
            _make_generator(order_model, config, tmp_path)

    def test_ts_only_needs_no_script_project(self, order_model: EntityModel, tmp_path: Path):
        config = GeneratorConfig(
            kdiff3_path=None,
            web_project_file="W/W.csproj",
            generate_ss_imports=False,
            generate_ts_code=True,
        )
        generator = _make_generator(order_model, config, tmp_path)
        assert generator.script_project is None
        assert generator.web_path == (tmp_path / "W").resolve()

    def test_discovers_merge_tool_from_config(self, order_model: EntityModel, generator_config, solution_dir):
        with patch("entitygen.scaffolder.generator.MergeTool.discover") as mock_discover:
            EntityCodeGenerator(order_model, generator_config, base_dir=solution_dir)
        mock_discover.assert_called_once_with(None)


# ---------------------------------------------------------------------------
# Path helpers
# ---------------------------------------------------------------------------


class TestPaths:
    def test_module_file(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        assert generator.module_file("OrderRow.cs") == r"Modules\Northwind\Order\OrderRow.cs"
        assert generator.module_file("OrderGrid.cs", modules_root=False) == r"Northwind\Order\OrderGrid.cs"

    def test_module_file_without_module_uses_root_namespace(self, order_model, generator_config, solution_dir):
        model = order_model.model_copy(update={"module": None})
        generator = _make_generator(model, generator_config, solution_dir)
        assert generator.module_file("OrderRow.cs") == r"Modules\Northwind\Order\OrderRow.cs"
        assert generator.import_file("OrderRow.cs", SERVER_IMPORTS) == r"Imports\ServerImports\OrderRow.cs"

    def test_import_file_prefixes_module(self, order_model, generator_config, solution_dir):
        model = order_model.model_copy(update={"module": "Sales"})
        generator = _make_generator(model, generator_config, solution_dir)
        assert generator.import_file("OrderRow.cs", SERVICE_CONTRACTS) == r"Imports\ServiceContracts\Sales.OrderRow.cs"

    def test_manifest_defaults_to_server_imports(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        assert generator.script_manifest(SERVICE_CONTRACTS) == SERVER_IMPORTS

    def test_manifest_keeps_existing_legacy(self, order_model, generator_config, solution_dir):
        legacy = _script_dir(solution_dir) / "Imports" / "ServiceContracts" / "ServiceContracts.tt"
        legacy.parent.mkdir(parents=True)
        legacy.write_text("", encoding="utf-8")
        generator = _make_generator(order_model, generator_config, solution_dir)

        assert generator.script_manifest(SERVICE_CONTRACTS) == SERVICE_CONTRACTS
        assert generator.script_manifest(FORM_CONTEXTS) == SERVER_IMPORTS

    def test_manifest_prefers_server_imports_when_both_exist(self, order_model, generator_config, solution_dir):
        script = _script_dir(solution_dir)
        for manifest in (SERVICE_CONTRACTS, SERVER_IMPORTS):
            path = script.joinpath(*manifest.split("\\"))
            path.parent.mkdir(parents=True)
            path.write_text("", encoding="utf-8")
        generator = _make_generator(order_model, generator_config, solution_dir)

        assert generator.script_manifest(SERVICE_CONTRACTS) == SERVER_IMPORTS


# ---------------------------------------------------------------------------
# Full runs
# ---------------------------------------------------------------------------


class TestRun:
    @pytest.mark.asyncio
    async def test_default_flags(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        result = await generator.run()

        assert result.relative_paths == WEB_FILES + SS_IMPORT_FILES + TS_TYPING_FILES + [
            r"Northwind\Order\OrderGrid.cs",
            r"Northwind\Order\OrderDialog.cs",
        ]
        assert all(f.status in (MergeStatus.CREATED, MergeStatus.APPENDED) for f in result.files)
        assert (_web_dir(solution_dir) / "Modules" / "Northwind" / "Order" / "OrderRow.cs").is_file()
        assert (_script_dir(solution_dir) / "Northwind" / "Order" / "OrderDialog.cs").is_file()
        projects = {f.relative_path: f.project for f in result.files}
        assert projects[SS_IMPORT_FILES[0]] == "script"
        assert projects[TS_TYPING_FILES[0]] == "web"

    @pytest.mark.asyncio
    async def test_ts_code_without_imports(self, order_model, generator_config, solution_dir):
        config = generator_config.model_copy(
            update={"generate_ts_code": True, "generate_ss_imports": False, "generate_ts_typings": False}
        )
        generator = _make_generator(order_model, config, solution_dir)
        result = await generator.run()

        assert result.relative_paths == WEB_FILES + [
            r"Modules\Northwind\Order\OrderGrid.ts",
            r"Modules\Northwind\Order\OrderDialog.ts",
        ]
        assert {f.project for f in result.files} == {"web"}

    @pytest.mark.asyncio
    async def test_registers_files_in_projects(self, order_model, generator_config, solution_dir, web_project, script_project):
        generator = _make_generator(order_model, generator_config, solution_dir)
        result = await generator.run()

        web = _read(web_project)
        script = _read(script_project)
        assert '<Compile Include="Modules\\Northwind\\Order\\OrderRow.cs" />' in web
        assert '<Content Include="Modules\\Northwind\\Order\\OrderIndex.cshtml" />' in web
        assert '<Content Include="Content\\site\\site.less" />' in web
        assert 'TypeScriptCompile Include="Modules\\Common\\Imports\\ServerTypings\\Northwind.OrderRow.ts"' in web
        assert "<DependentUpon>ServerTypings.tt</DependentUpon>" in web
        assert 'Compile Include="Imports\\ServerImports\\Northwind.OrderRow.cs"' in script
        assert "<DependentUpon>ServerImports.tt</DependentUpon>" in script
        assert '<Compile Include="Northwind\\Order\\OrderGrid.cs" />' in script
        assert all(f.registered for f in result.files)

    @pytest.mark.asyncio
    async def test_output_is_bom_and_crlf(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        await generator.run()

        raw = (_web_dir(solution_dir) / "Modules" / "Northwind" / "Order" / "OrderRow.cs").read_bytes()
        assert raw.startswith(b"\xef\xbb\xbf")
        assert b"\r\n" in raw
        assert raw.count(b"\n") == raw.count(b"\r\n")
        assert b"public sealed class OrderRow" in raw

    @pytest.mark.asyncio
    async def test_table_without_identity(self, order_model, generator_config, solution_dir):
        model = order_model.model_copy(
            update={
                "identity": None,
                "fields": [f.model_copy(update={"flags": []}) for f in order_model.fields],
            }
        )
        generator = _make_generator(model, generator_config, solution_dir)
        await generator.run()

        row = _read(_web_dir(solution_dir) / "Modules" / "Northwind" / "Order" / "OrderRow.cs")
        assert "public sealed class OrderRow" in row
        assert "IIdRow" not in row
        typings = _read(
            _web_dir(solution_dir) / "Modules" / "Common" / "Imports" / "ServerTypings" / "Northwind.OrderRow.ts"
        )
        assert "idProperty" not in typings
        grid = _read(_script_dir(solution_dir) / "Northwind" / "Order" / "OrderGrid.cs")
        assert "IdProperty" not in grid


class TestSiteLess:
    @pytest.mark.asyncio
    async def test_created_with_banner(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        generated = await generator.generate_css()

        assert generated.status == MergeStatus.APPENDED
        raw = generated.path.read_bytes()
        assert raw.startswith(b"\xef\xbb\xbf")
        text = raw.decode("utf-8-sig")
        assert "\r\n".join(APPENDED_BANNER) in text
        assert ".s-Northwind-OrderDialog {" in text

    @pytest.mark.asyncio
    async def test_appends_to_existing(self, order_model, generator_config, solution_dir):
        less = _web_dir(solution_dir) / "Content" / "site" / "site.less"
        less.parent.mkdir(parents=True)
        less.write_bytes(b"\xef\xbb\xbf@import \"site.base.less\";\r\n")
        generator = _make_generator(order_model, generator_config, solution_dir)

        await generator.generate_css()
        await generator.generate_css()

        text = _read(less)
        assert text.startswith('@import "site.base.less";')
        assert text.count(APPENDED_BANNER[1]) == 2
        assert not list(less.parent.glob("*.bak"))


class TestRegeneration:
    @pytest.mark.asyncio
    async def test_second_run_is_unchanged(self, order_model, generator_config, solution_dir):
        await _make_generator(order_model, generator_config, solution_dir).run()
        result = await _make_generator(order_model, generator_config, solution_dir).run()

        statuses = {f.relative_path: f.status for f in result.files}
        assert statuses.pop(r"Content\site\site.less") == MergeStatus.APPENDED
        assert set(statuses.values()) == {MergeStatus.UNCHANGED}
        assert not list(solution_dir.rglob("*.bak"))
        assert not any(f.registered for f in result.files if f.status == MergeStatus.UNCHANGED)

    @pytest.mark.asyncio
    async def test_edited_file_kept_without_merge_tool(self, order_model, generator_config, solution_dir):
        generator = _make_generator(order_model, generator_config, solution_dir)
        row = await generator.generate_row()
        row.path.write_text("// my edits\n", encoding="utf-8")

        again = await generator.generate_row()

        assert again.status == MergeStatus.BACKUP_KEPT
        assert again.backup is not None
        assert again.backup.read_text(encoding="utf-8") == "// my edits\n"
        assert again.backup.name.startswith("OrderRow.cs.") and again.backup.name.endswith(".bak")
        assert "public sealed class OrderRow" in _read(row.path)

    @pytest.mark.asyncio
    async def test_edited_file_merged(self, order_model, generator_config, solution_dir, tmp_path):
        tool_path = tmp_path / "kdiff3"
        tool_path.write_text("", encoding="utf-8")
        generator = _make_generator(order_model, generator_config, solution_dir, MergeTool(tool_path))
        row = await generator.generate_row()
        row.path.write_text("// my edits\n", encoding="utf-8")

        with patch(
            "entitygen.scaffolder.merge.run_command",
            new_callable=AsyncMock,
            return_value=(0, "", ""),
        ) as mock_run:
            again = await generator.generate_row()

        assert again.status == MergeStatus.MERGED
        cmd = mock_run.call_args.args[0]
        assert cmd[:2] == [str(tool_path), "--auto"]
        assert cmd[2] == str(again.backup)
        assert cmd[3:] == [str(row.path), "-o", str(row.path)]
