"""entitygen configuration.

Typed configuration for the code generator.  All settings use Pydantic v2
models so they are validated at construction time and serialised to/from the
JSON configuration file without boiler-plate.
"""

from __future__ import annotations

import os
import re
import xml.etree.ElementTree as ET
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote_plus

from pydantic import BaseModel, Field, ValidationError

from entitygen.utils import print_warning

CONFIG_FILE_NAME = "entitygen.config.json"
DEFAULT_ROOT_NAMESPACE = "MyProject"


class ConfigError(Exception):
    """Raised when the configuration cannot satisfy a request."""


# ---------------------------------------------------------------------------
# Nested models
# ---------------------------------------------------------------------------


class TableEntry(BaseModel):
    """Choices remembered for a table the generator has already processed."""

    tablename: str
    identifier: Optional[str] = None
    module: Optional[str] = None
    connection_key: Optional[str] = None
    permission_key: Optional[str] = None


class Connection(BaseModel):
    """A named database connection."""

    key: str
    connection_string: str = ""
    provider_name: str = ""
    tables: list[TableEntry] = Field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.key} [{self.connection_string}], {self.provider_name}"

    def to_sqlalchemy_url(self) -> str:
        """Return a SQLAlchemy URL for this connection.

        Strings that already look like URLs pass through untouched.  ADO.NET
        style ``Key=Value;`` strings are translated for the providers below.

        Raises:
            ConfigError: If the provider is not supported.
        """
        conn = self.connection_string.strip()
        if "://" in conn:
            return conn

        provider = self.provider_name.lower()
        parts = _parse_connection_string(conn)

        if provider in ("system.data.sqlclient", "microsoft.data.sqlclient"):
            return "mssql+pyodbc:///?odbc_connect=" + quote_plus(_to_odbc(parts))

        if "sqlite" in provider:
            source = parts.get("data source") or parts.get("datasource")
            if not source:
                raise ConfigError(f"Connection '{self.key}' has no Data Source")
            if source == ":memory:":
                return "sqlite://"
            return f"sqlite:///{source}"

        if provider == "npgsql":
            return _build_url("postgresql", parts)

        if provider in ("mysql.data.mysqlclient", "mysqlconnector"):
            return _build_url("mysql+pymysql", parts)

        raise ConfigError(
            f"Connection '{self.key}': unsupported provider '{self.provider_name}'. "
            "Use a SQLAlchemy URL as the connection string instead."
        )


class BaseRowClass(BaseModel):
    """A shared row base class and the columns it already declares."""

    class_name: str
    fields: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Main configuration
# ---------------------------------------------------------------------------


class GeneratorConfig(BaseModel):
    """Global entitygen configuration.

    Instances are created once by the CLI (usually through :meth:`load`) and
    then passed to the schema reader and the generator.
    """

    connections: list[Connection] = Field(default_factory=list)
    kdiff3_path: Optional[str] = Field(default_factory=lambda: _default_kdiff3_path())
    web_project_file: Optional[str] = None
    script_project_file: Optional[str] = None
    root_namespace: str = DEFAULT_ROOT_NAMESPACE
    base_row_classes: list[BaseRowClass] = Field(default_factory=list)
    remove_foreign_fields: list[str] = Field(default_factory=list)
    generate_ss_imports: bool = True
    generate_ts_typings: bool = True
    generate_ts_code: bool = False

    # ------------------------------------------------------------------
    # Location & defaults
    # ------------------------------------------------------------------

    @staticmethod
    def get_configuration_file_path(base_dir: str | Path | None = None) -> Path:
        """Return where the configuration file lives.

        ``ENTITYGEN_CONFIG`` overrides everything.  When running from a
        package ``tools`` folder (``.../packages/EntityGen.x.y/tools``) the
        file lives in the solution folder three levels up.
        """
        override = os.environ.get("ENTITYGEN_CONFIG")
        if override:
            return Path(override)

        config_dir = Path(base_dir) if base_dir else Path.cwd()
        if _is_package_tools_dir(config_dir):
            config_dir = config_dir.parent.parent.parent
        return config_dir / CONFIG_FILE_NAME

    @classmethod
    def with_defaults(cls, base_dir: str | Path | None = None) -> "GeneratorConfig":
        """Build a config with defaults discovered from the solution folder.

        If the configuration folder holds exactly one ``*.sln`` its stem
        becomes the root namespace, and the conventional web and script
        project files are picked up when present.
        """
        base = Path(base_dir) if base_dir else Path.cwd()
        config = cls()
        config_dir = cls.get_configuration_file_path(base).parent
        if not config_dir.is_dir():
            return config

        solutions = sorted(config_dir.glob("*.sln"))
        if len(solutions) != 1:
            return config

        namespace = solutions[0].stem
        config.root_namespace = namespace
        sub_path = config_dir / namespace

        web_project = sub_path / f"{namespace}.Web" / f"{namespace}.Web.csproj"
        if web_project.is_file():
            config.web_project_file = get_relative_path(web_project, base)

        script_project = sub_path / f"{namespace}.Script" / f"{namespace}.Script.csproj"
        if script_project.is_file():
            config.script_project_file = get_relative_path(script_project, base)

        return config

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path | None = None) -> Path:
        """Persist the configuration as indented JSON.

        Connections are sorted by key before writing.

        Returns:
            The path where the file was written.
        """
        target = Path(path) if path else self.get_configuration_file_path()
        self.connections.sort(key=lambda c: c.key)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(
        cls, path: Path | None = None, base_dir: str | Path | None = None
    ) -> "GeneratorConfig":
        """Load the configuration file, falling back to discovered defaults.

        Args:
            path: Explicit file to read.  Defaults to
                :meth:`get_configuration_file_path`.
            base_dir: Folder used for default discovery.
        """
        target = Path(path) if path else cls.get_configuration_file_path(base_dir)
        if not target.is_file():
            return cls.with_defaults(base_dir)

        raw = target.read_text(encoding="utf-8-sig")
        if not raw.strip():
            return cls.with_defaults(base_dir)
        try:
            config = cls.model_validate_json(raw)
        except ValidationError as exc:
            raise ConfigError(f"Invalid configuration file {target}: {exc}") from exc
        config.connections = config.connections or []
        config.remove_foreign_fields = config.remove_foreign_fields or []
        return config

    @classmethod
    def from_env(cls, base: "GeneratorConfig | None" = None) -> "GeneratorConfig":
        """Overlay ``ENTITYGEN_*`` environment variables on a config.

        Recognised variables (all optional):
            ENTITYGEN_ROOT_NAMESPACE, ENTITYGEN_WEB_PROJECT,
            ENTITYGEN_SCRIPT_PROJECT, ENTITYGEN_KDIFF3,
            ENTITYGEN_SS_IMPORTS, ENTITYGEN_TS_TYPINGS, ENTITYGEN_TS_CODE.
        """
        config = base.model_copy(deep=True) if base else cls()
        overrides: dict[str, Any] = {}
        if os.environ.get("ENTITYGEN_ROOT_NAMESPACE"):
            overrides["root_namespace"] = os.environ["ENTITYGEN_ROOT_NAMESPACE"]
        if os.environ.get("ENTITYGEN_WEB_PROJECT"):
            overrides["web_project_file"] = os.environ["ENTITYGEN_WEB_PROJECT"]
        if os.environ.get("ENTITYGEN_SCRIPT_PROJECT"):
            overrides["script_project_file"] = os.environ["ENTITYGEN_SCRIPT_PROJECT"]
        if os.environ.get("ENTITYGEN_KDIFF3"):
            overrides["kdiff3_path"] = os.environ["ENTITYGEN_KDIFF3"]
        for env_name, field_name in (
            ("ENTITYGEN_SS_IMPORTS", "generate_ss_imports"),
            ("ENTITYGEN_TS_TYPINGS", "generate_ts_typings"),
            ("ENTITYGEN_TS_CODE", "generate_ts_code"),
        ):
            if os.environ.get(env_name):
                overrides[field_name] = _parse_bool(os.environ[env_name])

        for name, value in overrides.items():
            setattr(config, name, value)
        return config

    # ------------------------------------------------------------------
    # Connections & tables
    # ------------------------------------------------------------------

    def get_connection(self, key: str) -> Connection:
        """Return the connection named *key* (case-insensitive).

        Raises:
            ConfigError: If no such connection is configured.
        """
        for connection in self.connections:
            if connection.key.lower() == key.lower():
                return connection
        known = ", ".join(c.key for c in self.connections) or "none"
        raise ConfigError(f"Unknown connection '{key}' (configured: {known})")

    def find_table(self, connection_key: str, tablename: str) -> TableEntry | None:
        """Return remembered choices for a table, if any."""
        connection = self.get_connection(connection_key)
        for table in connection.tables:
            if table.tablename.lower() == tablename.lower():
                return table
        return None

    def remember_table(self, connection_key: str, entry: TableEntry) -> TableEntry:
        """Insert or replace the remembered choices for ``entry.tablename``."""
        connection = self.get_connection(connection_key)
        connection.tables = [
            t for t in connection.tables
            if t.tablename.lower() != entry.tablename.lower()
        ]
        connection.tables.append(entry)
        return entry

    def update_connections_from(
        self,
        config_file_path: str | Path | None,
        added: Callable[[Connection], None] | None = None,
    ) -> None:
        """Import connection strings from an XML application config.

        Reads every ``configuration/connectionStrings/add`` element whose
        ``name``, ``connectionString`` and ``providerName`` are all present.
        Unknown keys are appended (and reported through *added*); known keys
        get their string and provider refreshed.  A malformed file is
        reported as a warning and leaves the configuration untouched.
        """
        if not config_file_path:
            return
        path = Path(config_file_path)
        if not path.is_file():
            return

        try:
            root = ET.parse(path).getroot()
        except (ET.ParseError, OSError, UnicodeError) as exc:
            print_warning(f"Could not read connection strings from {path}: {exc}")
            return

        if _local_name(root.tag) != "configuration":
            return

        for node in root.iter():
            if _local_name(node.tag) != "connectionStrings":
                continue
            for add in node:
                if _local_name(add.tag) != "add":
                    continue
                name = (add.get("name") or "").strip()
                conn = add.get("connectionString") or ""
                prov = add.get("providerName") or ""
                if not name or not conn.strip() or not prov.strip():
                    continue

                existing = next(
                    (c for c in self.connections if c.key.lower() == name.lower()),
                    None,
                )
                if existing is None:
                    connection = Connection(
                        key=name, connection_string=conn, provider_name=prov
                    )
                    self.connections.append(connection)
                    if added is not None:
                        added(connection)
                else:
                    existing.connection_string = conn
                    existing.provider_name = prov


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def get_relative_path(filespec: str | Path, folder: str | Path) -> str:
    """Return *filespec* relative to *folder*, walking up with ``..`` if needed."""
    return os.path.relpath(Path(filespec).resolve(), Path(folder).resolve())


def _is_package_tools_dir(path: Path) -> bool:
    """True when *path* looks like ``.../packages/EntityGen.<version>/tools``."""
    parts = [p.lower() for p in path.resolve().parts]
    return (
        len(parts) >= 3
        and parts[-1] == "tools"
        and parts[-3] == "packages"
        and parts[-2].startswith("entitygen.")
    )


def _default_kdiff3_path() -> str | None:
    program_files = os.environ.get("ProgramFiles(x86)")
    if not program_files:
        return None
    return str(Path(program_files) / "KDiff3" / "kdiff3.exe")


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_connection_string(conn: str) -> dict[str, str]:
    """Split an ADO.NET ``Key=Value;...`` string into a lower-cased mapping."""
    parts: dict[str, str] = {}
    for item in conn.split(";"):
        if "=" not in item:
            continue
        key, _, value = item.partition("=")
        parts[key.strip().lower()] = value.strip()
    return parts


_ODBC_KEYS = {
    "data source": "Server",
    "server": "Server",
    "address": "Server",
    "addr": "Server",
    "network address": "Server",
    "initial catalog": "Database",
    "database": "Database",
    "user id": "UID",
    "user": "UID",
    "uid": "UID",
    "password": "PWD",
    "pwd": "PWD",
}

_TRUE_VALUES = ("true", "yes", "sspi")


def _to_odbc(parts: dict[str, str]) -> str:
    """Rewrite SqlClient keywords as the ones the SQL Server ODBC driver reads."""
    odbc: dict[str, str] = {"DRIVER": "{ODBC Driver 17 for SQL Server}"}
    for key, value in parts.items():
        if key in _ODBC_KEYS:
            odbc[_ODBC_KEYS[key]] = value
        elif key in ("integrated security", "trusted_connection"):
            if value.lower() in _TRUE_VALUES:
                odbc["Trusted_Connection"] = "yes"
        elif key == "multipleactiveresultsets":
            if value.lower() in _TRUE_VALUES:
                odbc["MARS_Connection"] = "yes"
        else:
            odbc[key] = value
    return ";".join(f"{key}={value}" for key, value in odbc.items())


def _build_url(dialect: str, parts: dict[str, str]) -> str:
    host = parts.get("server") or parts.get("host") or "localhost"
    port = parts.get("port") or ""
    database = parts.get("database") or parts.get("initial catalog") or ""
    user = parts.get("user id") or parts.get("username") or parts.get("uid") or ""
    password = parts.get("password") or parts.get("pwd") or ""

    auth = ""
    if user:
        auth = quote_plus(user)
        if password:
            auth += ":" + quote_plus(password)
        auth += "@"
    hostport = host + (f":{port}" if port else "")
    return f"{dialect}://{auth}{hostport}/{database}"


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")


def is_valid_namespace(value: str) -> bool:
    """True when *value* is a dotted identifier usable as a namespace."""
    return bool(_IDENTIFIER_RE.match(value)) and ".." not in value
