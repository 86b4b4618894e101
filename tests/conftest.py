"""Shared pytest fixtures for the entitygen test suite.

Provides reusable fixtures for:
- Temporary solution folders with web and script project files
- A small SQLite database with related tables
- Ready-made entity models and generator configurations
- Mock subprocess helpers
"""

from __future__ import annotations

import textwrap
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    NCHAR,
    Numeric,
    String,
    Table,
    Text,
    create_engine,
)

from entitygen.config import Connection, GeneratorConfig
from entitygen.schema.models import EntityField, EntityJoin, EntityModel

CLASSIC_PROJECT = textwrap.dedent("""\
    <?xml version="1.0" encoding="utf-8"?>
    <Project ToolsVersion="12.0" DefaultTargets="Build" xmlns="http://schemas.microsoft.com/developer/msbuild/2003">
      <PropertyGroup>
        <RootNamespace>Northwind</RootNamespace>
      </PropertyGroup>
      <!-- sources -->
      <ItemGroup>
        <Compile Include="Properties\\AssemblyInfo.cs" />
      </ItemGroup>
      <ItemGroup>
        <Content Include="Web.config" />
      </ItemGroup>
    </Project>
    """)

SDK_PROJECT = textwrap.dedent("""\
    <Project Sdk="Microsoft.NET.Sdk.Web">
      <PropertyGroup>
        <TargetFramework>net8.0</TargetFramework>
      </PropertyGroup>
    </Project>
    """)


@pytest.fixture
def sdk_project_text() -> str:
    return SDK_PROJECT


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary working directory (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


def write_project(path: Path, content: str = CLASSIC_PROJECT, crlf: bool = True) -> Path:
    """Write a project manifest the way Visual Studio does (BOM, CRLF)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    text = content.replace("\n", "\r\n") if crlf else content
    path.write_bytes(text.encode("utf-8-sig"))
    return path


@pytest.fixture
def make_project():
    """Factory writing a project manifest: ``make_project(path, content=..., crlf=...)``."""
    return write_project


@pytest.fixture
def solution_dir(tmp_path: Path) -> Path:
    """A ``Northwind.sln`` folder with conventional web and script projects."""
    root = tmp_path / "Northwind"
    root.mkdir()
    (root / "Northwind.sln").write_text("Microsoft Visual Studio Solution File\n", encoding="utf-8")
    write_project(root / "Northwind" / "Northwind.Web" / "Northwind.Web.csproj")
    write_project(root / "Northwind" / "Northwind.Script" / "Northwind.Script.csproj")
    yield root


@pytest.fixture
def web_project(solution_dir: Path) -> Path:
    return solution_dir / "Northwind" / "Northwind.Web" / "Northwind.Web.csproj"


@pytest.fixture
def script_project(solution_dir: Path) -> Path:
    return solution_dir / "Northwind" / "Northwind.Script" / "Northwind.Script.csproj"


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
def northwind_db(tmp_path: Path) -> Path:
    """SQLite file with Categories, Customers and Orders (Orders -> Customers)."""
    db_path = tmp_path / "northwind.db"
    engine = create_engine(f"sqlite:///{db_path}")
    metadata = MetaData()
    Table(
        "Categories",
        metadata,
        Column("CategoryID", Integer, primary_key=True),
        Column("CategoryName", String(15), nullable=False),
        Column("Description", Text),
    )
    Table(
        "Customers",
        metadata,
        Column("CustomerID", NCHAR(5), primary_key=True),
        Column("CompanyName", String(40), nullable=False),
        Column("ContactName", String(30)),
    )
    Table(
        "Orders",
        metadata,
        Column("OrderID", Integer, primary_key=True),
        Column("CustomerID", NCHAR(5), ForeignKey("Customers.CustomerID")),
        Column("OrderDate", DateTime),
        Column("Freight", Numeric(10, 4)),
        Column("Shipped", Boolean),
    )
    Table(
        "tbl_audit",
        metadata,
        Column("A_Id", Integer, primary_key=True),
        Column("A_Message", String(200)),
    )
    metadata.create_all(engine)
    engine.dispose()
    yield db_path


@pytest.fixture
def northwind_connection(northwind_db: Path) -> Connection:
    return Connection(
        key="Northwind",
        connection_string=f"Data Source={northwind_db}",
        provider_name="System.Data.SQLite",
    )


# ---------------------------------------------------------------------------
# Config & models
# ---------------------------------------------------------------------------

@pytest.fixture
def generator_config(solution_dir: Path, web_project: Path, script_project: Path) -> GeneratorConfig:
    """Config pointing at the solution projects, relative to *solution_dir*."""
    return GeneratorConfig(
        root_namespace="Northwind",
        web_project_file=str(web_project.relative_to(solution_dir)),
        script_project_file=str(script_project.relative_to(solution_dir)),
        kdiff3_path=None,
    )


@pytest.fixture
def order_model() -> EntityModel:
    """Hand-built model of an Orders table with a join to Customers."""
    return EntityModel(
        root_namespace="Northwind",
        module="Northwind",
        connection_key="Northwind",
        tablename="Orders",
        title="Orders",
        identity="OrderID",
        row_class_name="OrderRow",
        class_name="Order",
        fields=[
            EntityField(
                ident="OrderID",
                name="OrderID",
                title="Order Id",
                field_type="Int32",
                data_type="Int32",
                is_value_type=True,
                ts_type="number",
                flags=["Identity"],
                omit_in_form=True,
            ),
            EntityField(
                ident="CustomerID",
                name="CustomerID",
                title="Customer Id",
                size=5,
                pk_table="Customers",
                pk_field="CustomerID",
                foreign_join_alias="jCustomer",
                textual_field="CustomerCompanyName",
            ),
            EntityField(
                ident="OrderDate",
                name="OrderDate",
                title="Order Date",
                field_type="DateTime",
                data_type="DateTime",
                is_value_type=True,
            ),
        ],
        joins=[
            EntityJoin(
                name="jCustomer",
                source_field="CustomerID",
                fields=[
                    EntityField(
                        ident="CustomerCompanyName",
                        name="CompanyName",
                        title="Customer Company Name",
                        size=40,
                        expression="jCustomer.[CompanyName]",
                        omit_in_form=True,
                    ),
                ],
            ),
        ],
    )


# ---------------------------------------------------------------------------
# Mock subprocess
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory
