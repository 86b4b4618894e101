"""entitygen command line.

Usage::

    python -m entitygen init
    python -m entitygen connections --import MyProject.Web/Web.config
    python -m entitygen tables --connection Northwind
    python -m entitygen generate --connection Northwind --table Customers --module Northwind
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path

from rich.markup import escape

from entitygen.config import (
    ConfigError,
    Connection,
    GeneratorConfig,
    TableEntry,
    is_valid_namespace,
)
from entitygen.scaffolder import (
    EntityCodeGenerator,
    MergeError,
    MergeStatus,
    ProjectFileError,
)
from entitygen.schema import SchemaError, build_entity_model, list_tables, open_engine
from entitygen.utils import (
    console,
    create_progress,
    format_duration,
    print_success,
    print_summary_table,
    print_warning,
)


# ---------------------------------------------------------------------------
# Config loading
# ---------------------------------------------------------------------------


def _config_path(args: argparse.Namespace) -> Path:
    if args.config:
        return Path(args.config)
    return GeneratorConfig.get_configuration_file_path(args.base_dir)


def _load_config(args: argparse.Namespace) -> GeneratorConfig:
    config = GeneratorConfig.load(_config_path(args), base_dir=args.base_dir)
    return GeneratorConfig.from_env(config)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_init(args: argparse.Namespace) -> None:
    """Write a configuration file with discovered defaults."""
    path = _config_path(args)
    if path.exists() and not args.force:
        raise ConfigError(f"{path} already exists (use --force to overwrite)")
    config = GeneratorConfig.with_defaults(args.base_dir)
    written = config.save(path)
    print_success(f"Configuration written to {written}")
    print_summary_table(
        [
            ("Root namespace", config.root_namespace),
            ("Web project", config.web_project_file or "-"),
            ("Script project", config.script_project_file or "-"),
        ],
        title="Defaults",
    )


def cmd_connections(args: argparse.Namespace) -> None:
    """List connections, importing from an application config first if asked."""
    path = _config_path(args)
    config = _load_config(args)

    if args.import_from:
        added: list[Connection] = []
        config.update_connections_from(args.import_from, added.append)
        config.save(path)
        for connection in added:
            console.print(f"  [green]+[/green] {connection.key}")
        print_success(f"Imported connections from {args.import_from} ({len(added)} new)")

    if not config.connections:
        print_warning("No connections configured.")
        return

    print_summary_table(
        [(c.key, c.provider_name, c.connection_string) for c in config.connections],
        columns=("Key", "Provider", "Connection string"),
        title="Connections",
    )


def cmd_tables(args: argparse.Namespace) -> None:
    """List the tables and views of a connection."""
    config = _load_config(args)
    connection = config.get_connection(args.connection)
    engine = open_engine(connection)
    try:
        names = list_tables(engine, schema=args.schema)
    finally:
        engine.dispose()

    rows = []
    for name in names:
        remembered = next(
            (t for t in connection.tables if t.tablename.lower() == name.lower()), None
        )
        rows.append((
            name,
            remembered.module or "-" if remembered else "",
            remembered.identifier or "-" if remembered else "",
        ))
    print_summary_table(rows, columns=("Table", "Module", "Class"), title=connection.key)


def cmd_generate(args: argparse.Namespace) -> None:
    """Generate the CRUD files for one table."""
    started = time.monotonic()
    path = _config_path(args)
    config = _load_config(args)
    if args.ts_code is not None:
        config.generate_ts_code = args.ts_code

    connection = config.get_connection(args.connection)
    remembered = config.find_table(connection.key, args.table) or TableEntry(tablename=args.table)

    module = args.module if args.module is not None else remembered.module
    identifier = args.identifier or remembered.identifier
    permission = args.permission or remembered.permission_key
    connection_key = args.connection_key or remembered.connection_key or connection.key

    for label, value in (("module", module), ("identifier", identifier)):
        if value and not is_valid_namespace(value):
            raise ConfigError(f"Invalid {label}: '{value}'")

    engine = open_engine(connection)
    try:
        with create_progress() as progress:
            progress.add_task(f"Reading {args.table}...", total=None)
            model = build_entity_model(
                engine,
                args.table,
                config=config,
                connection_key=connection_key,
                schema=args.schema,
                module=module,
                identifier=identifier,
                permission=permission,
            )
    finally:
        engine.dispose()

    console.print(
        f"  Generating [bold]{model.class_name}[/bold] from "
        f"[bold]{model.schema_and_table}[/bold] ({len(model.fields)} fields, "
        f"{len(model.joins)} joins)"
    )
    generator = EntityCodeGenerator(model, config, base_dir=args.base_dir)
    result = asyncio.run(generator.run())

    config.remember_table(
        connection.key,
        TableEntry(
            tablename=model.tablename,
            identifier=model.class_name,
            module=model.module,
            connection_key=connection_key,
            permission_key=model.permission,
        ),
    )
    config.save(path)

    console.print()
    print_summary_table(
        [
            ("Files written", str(len(result.files))),
            ("Merged", str(len(result.by_status(MergeStatus.MERGED)))),
            ("Unchanged", str(len(result.by_status(MergeStatus.UNCHANGED)))),
            ("Backups kept", str(len(result.by_status(MergeStatus.BACKUP_KEPT)))),
            ("Duration", format_duration(time.monotonic() - started)),
        ],
        title=model.class_name,
    )
    if result.by_status(MergeStatus.BACKUP_KEPT):
        print_warning(
            "No merge tool found; review the .bak files next to the regenerated sources."
        )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="entitygen",
        description="Scaffold CRUD source files from database table metadata",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  entitygen init\n"
            "  entitygen connections --import MyProject.Web/Web.config\n"
            "  entitygen generate -c Northwind -t Customers --module Northwind\n"
        ),
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Configuration file (default: ./entitygen.config.json or $ENTITYGEN_CONFIG)",
    )
    parser.add_argument(
        "--base-dir",
        default=None,
        help="Folder project paths are relative to (default: current directory)",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Write a default configuration file")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init.set_defaults(func=cmd_init)

    conns = sub.add_parser("connections", help="List or import connections")
    conns.add_argument(
        "--import",
        dest="import_from",
        default=None,
        help="XML application config to read connectionStrings from",
    )
    conns.set_defaults(func=cmd_connections)

    tables = sub.add_parser("tables", help="List tables of a connection")
    tables.add_argument("--connection", "-c", required=True)
    tables.add_argument("--schema", default=None)
    tables.set_defaults(func=cmd_tables)

    gen = sub.add_parser("generate", help="Generate code for a table")
    gen.add_argument("--connection", "-c", required=True, help="Connection key")
    gen.add_argument("--table", "-t", required=True, help="Table name")
    gen.add_argument("--schema", default=None, help="Database schema")
    gen.add_argument("--module", "-m", default=None, help="Module (sub-namespace)")
    gen.add_argument("--identifier", "-i", default=None, help="Entity class name")
    gen.add_argument("--permission", "-p", default=None, help="Permission key")
    gen.add_argument(
        "--connection-key",
        default=None,
        help="Connection key written into the row (default: the connection's key)",
    )
    gen.add_argument(
        "--ts-code",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Generate TypeScript grid/dialog instead of script project classes",
    )
    gen.set_defaults(func=cmd_generate)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``entitygen`` / ``python -m entitygen``."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        args.func(args)
    except (ConfigError, SchemaError, MergeError, ProjectFileError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(1)


if __name__ == "__main__":
    main()
