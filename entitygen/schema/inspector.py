"""Database metadata reader.

Turns a table definition read through ``sqlalchemy.inspect`` into an
:class:`~entitygen.schema.models.EntityModel`.  All naming decisions (class
name, property names, join aliases, titles) are made here so the templates
stay free of logic.
"""

from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import create_engine, inspect, types
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import ArgumentError, SQLAlchemyError

from entitygen.config import Connection, GeneratorConfig
from entitygen.schema.models import EntityField, EntityJoin, EntityModel
from entitygen.utils import singularize, split_words, to_pascal

DEFAULT_PERMISSION = "Administration"


class SchemaError(Exception):
    """Raised when table metadata cannot be read."""

    def __init__(self, message: str, table: str = "") -> None:
        self.table = table
        super().__init__(message)


# ---------------------------------------------------------------------------
# Engine / listing
# ---------------------------------------------------------------------------


def open_engine(connection: Connection) -> Engine:
    """Create an SQLAlchemy engine for a configured connection.

    Raises:
        SchemaError: If the URL is malformed or its driver is not installed.
    """
    url = connection.to_sqlalchemy_url()
    try:
        return create_engine(url)
    except (ArgumentError, ImportError) as exc:
        raise SchemaError(f"Cannot open connection '{connection.key}': {exc}") from exc


def list_tables(engine: Engine, schema: Optional[str] = None) -> list[str]:
    """Return the sorted table and view names of *schema*."""
    try:
        inspector = inspect(engine)
        names = set(inspector.get_table_names(schema=schema))
        names.update(inspector.get_view_names(schema=schema))
    except SQLAlchemyError as exc:
        raise SchemaError(f"Cannot list tables: {exc}") from exc
    return sorted(names, key=str.lower)


# ---------------------------------------------------------------------------
# Type mapping
# ---------------------------------------------------------------------------

# (sqlalchemy type, field type, is value type, ts type); order matters because
# SmallInteger/BigInteger derive from Integer and REAL derives from Float.
_TYPE_MAP: list[tuple[type, str, bool, str]] = [
    (types.Boolean, "Boolean", True, "boolean"),
    (types.SmallInteger, "Int16", True, "number"),
    (types.BigInteger, "Int64", True, "number"),
    (types.Integer, "Int32", True, "number"),
    (types.REAL, "Single", True, "number"),
    (types.Float, "Double", True, "number"),
    (types.Numeric, "Decimal", True, "number"),
    (types.DateTime, "DateTime", True, "string"),
    (types.Date, "DateTime", True, "string"),
    (types.Time, "TimeSpan", True, "string"),
    (types.Interval, "TimeSpan", True, "string"),
    (types.Uuid, "Guid", True, "string"),
    (types.LargeBinary, "Stream", False, "string"),
    (types.String, "String", False, "string"),
]


def map_column_type(sql_type: Any) -> tuple[str, bool, str]:
    """Map an SQLAlchemy column type to ``(field_type, is_value_type, ts_type)``.

    Unknown types fall back to ``String``.
    """
    for sa_type, field_type, is_value, ts_type in _TYPE_MAP:
        if isinstance(sql_type, sa_type):
            return field_type, is_value, ts_type
    return "String", False, "string"


# ---------------------------------------------------------------------------
# Naming helpers
# ---------------------------------------------------------------------------


def determine_field_prefix(names: list[str]) -> str:
    """Return the ``Prefix_`` shared by every column, or ``""``.

    ``["C_Id", "C_Name"]`` -> ``"C_"``.  A prefix is only accepted when at
    least two columns exist and none of them consists of the prefix alone.
    """
    if len(names) < 2 or "_" not in names[0]:
        return ""
    prefix = names[0][: names[0].index("_") + 1]
    for name in names:
        if not name.startswith(prefix) or len(name) == len(prefix):
            return ""
    return prefix


def join_alias_base(ident: str) -> str:
    """``CustomerID`` -> ``Customer``; idents without an Id suffix stay as-is."""
    for suffix in ("Id", "ID"):
        if ident.endswith(suffix) and len(ident) > len(suffix):
            return ident[: -len(suffix)]
    return ident


# ---------------------------------------------------------------------------
# Model building
# ---------------------------------------------------------------------------


def build_entity_model(
    engine: Engine,
    tablename: str,
    *,
    config: GeneratorConfig,
    connection_key: str,
    schema: Optional[str] = None,
    module: Optional[str] = None,
    identifier: Optional[str] = None,
    permission: Optional[str] = None,
) -> EntityModel:
    """Read *tablename* and build the generation model.

    Args:
        engine: Engine opened with :func:`open_engine`.
        tablename: Table or view name (matched case-insensitively).
        config: Supplies the root namespace, base row classes and the names
            of foreign columns that should not become view fields.
        connection_key: Connection key written into the row class.
        schema: Database schema, if not the default one.
        module: Module (sub-namespace and folder) for the entity.
        identifier: Class name; defaults to the singular PascalCase table name.
        permission: Permission key; defaults to ``Administration``.

    Raises:
        SchemaError: If the table does not exist or cannot be read.
    """
    try:
        inspector = inspect(engine)
        actual = _resolve_table_name(inspector, tablename, schema)
        columns = inspector.get_columns(actual, schema=schema)
        pk_columns = _primary_key_columns(inspector, actual, schema)
        foreign_keys = inspector.get_foreign_keys(actual, schema=schema)
    except SQLAlchemyError as exc:
        raise SchemaError(f"Cannot read table '{tablename}': {exc}", tablename) from exc

    names = [c["name"] for c in columns]
    prefix = determine_field_prefix(names)

    identity = _pick_identity(columns, pk_columns)
    fields = [
        _build_field(col, prefix, pk_columns, identity_column=identity)
        for col in columns
    ]

    row_base_class, row_base_fields = _pick_base_row_class(config, fields)
    if row_base_fields:
        lowered = {f.lower() for f in row_base_fields}
        fields = [
            f for f in fields
            if f.ident.lower() not in lowered and f.name.lower() not in lowered
        ]

    joins = _build_joins(inspector, fields, foreign_keys, config)

    name_field = _pick_name_field(fields)
    if name_field is not None:
        name_field.flags.append("QuickSearch")

    class_name = identifier or singularize(to_pascal(actual))
    identity_field = next((f for f in fields if f.is_identity), None)
    if identity_field is None:
        identity_field = next((f for f in fields if "PrimaryKey" in f.flags), None)

    return EntityModel(
        root_namespace=config.root_namespace,
        module=module or None,
        connection_key=connection_key,
        permission=permission or DEFAULT_PERMISSION,
        schema=schema,
        tablename=actual,
        title=split_words(actual),
        identity=identity_field.ident if identity_field else None,
        row_class_name=f"{class_name}Row",
        class_name=class_name,
        row_base_class=row_base_class,
        row_base_fields=row_base_fields,
        name_field=name_field.ident if name_field else None,
        field_prefix=prefix,
        fields=fields,
        joins=joins,
    )


def _resolve_table_name(inspector: Inspector, tablename: str, schema: Optional[str]) -> str:
    candidates = list(inspector.get_table_names(schema=schema))
    candidates.extend(inspector.get_view_names(schema=schema))
    for name in candidates:
        if name == tablename:
            return name
    for name in candidates:
        if name.lower() == tablename.lower():
            return name
    where = f" in schema '{schema}'" if schema else ""
    raise SchemaError(f"Table '{tablename}' not found{where}", tablename)


def _primary_key_columns(inspector: Inspector, table: str, schema: Optional[str]) -> list[str]:
    constraint = inspector.get_pk_constraint(table, schema=schema) or {}
    return list(constraint.get("constrained_columns") or [])


def _pick_identity(columns: list[dict[str, Any]], pk_columns: list[str]) -> Optional[str]:
    """Return the auto-increment key column, if the table has one."""
    if len(pk_columns) != 1:
        return None
    pk = pk_columns[0]
    column = next((c for c in columns if c["name"] == pk), None)
    if column is None:
        return None
    autoincrement = column.get("autoincrement", "auto")
    if autoincrement is True:
        return pk
    if autoincrement == "auto" and isinstance(column["type"], types.Integer):
        return pk
    return None


def _build_field(
    column: dict[str, Any],
    prefix: str,
    pk_columns: list[str],
    identity_column: Optional[str],
) -> EntityField:
    name = column["name"]
    ident = to_pascal(name[len(prefix):])
    field_type, is_value, ts_type = map_column_type(column["type"])

    flags: list[str] = []
    if name == identity_column:
        flags.append("Identity")
    elif name in pk_columns:
        flags.append("PrimaryKey")
    elif not column.get("nullable", True):
        flags.append("NotNull")

    size = getattr(column["type"], "length", None)
    scale: Optional[int] = None
    if field_type == "Decimal":
        size = getattr(column["type"], "precision", None)
        scale = getattr(column["type"], "scale", None)

    return EntityField(
        ident=ident,
        name=name,
        title=split_words(ident),
        field_type=field_type,
        data_type=field_type,
        is_value_type=is_value,
        ts_type=ts_type,
        size=size or None,
        scale=scale or None,
        flags=flags,
        omit_in_form=name == identity_column,
    )


def _pick_base_row_class(
    config: GeneratorConfig, fields: list[EntityField]
) -> tuple[str, list[str]]:
    """Pick the base row class whose fields the table holds, preferring the largest."""
    available = {f.ident.lower() for f in fields} | {f.name.lower() for f in fields}
    best_class, best_fields = "Row", []
    for base in config.base_row_classes:
        if not base.fields:
            continue
        if all(name.lower() in available for name in base.fields):
            if len(base.fields) > len(best_fields):
                best_class, best_fields = base.class_name, list(base.fields)
    return best_class, best_fields


def _pick_name_field(fields: list[EntityField]) -> Optional[EntityField]:
    for field in fields:
        if field.field_type != "String" or field.is_identity or field.is_foreign:
            continue
        if "PrimaryKey" not in field.flags:
            return field
    return None


def _build_joins(
    inspector: Inspector,
    fields: list[EntityField],
    foreign_keys: list[dict[str, Any]],
    config: GeneratorConfig,
) -> list[EntityJoin]:
    """Turn single-column foreign keys into left joins with view fields."""
    removed = {name.lower() for name in config.remove_foreign_fields}
    by_name = {f.name: f for f in fields}
    joins: list[EntityJoin] = []
    used_aliases: set[str] = set()

    for fk in foreign_keys:
        constrained = fk.get("constrained_columns") or []
        referred = fk.get("referred_columns") or []
        if len(constrained) != 1 or len(referred) != 1:
            continue
        field = by_name.get(constrained[0])
        if field is None:
            continue

        alias_base = join_alias_base(field.ident)
        alias = f"j{alias_base}"
        if alias in used_aliases:
            continue
        used_aliases.add(alias)

        ref_schema = fk.get("referred_schema")
        ref_table = fk["referred_table"]
        field.pk_schema = ref_schema
        field.pk_table = ref_table
        field.pk_field = referred[0]
        field.foreign_join_alias = alias

        try:
            ref_columns = inspector.get_columns(ref_table, schema=ref_schema)
            ref_pk = _primary_key_columns(inspector, ref_table, ref_schema)
        except SQLAlchemyError as exc:
            raise SchemaError(
                f"Cannot read referenced table '{ref_table}': {exc}", ref_table
            ) from exc

        ref_prefix = determine_field_prefix([c["name"] for c in ref_columns])
        view_fields: list[EntityField] = []
        for column in ref_columns:
            if column["name"] in ref_pk:
                continue
            col_ident = to_pascal(column["name"][len(ref_prefix):])
            if column["name"].lower() in removed or col_ident.lower() in removed:
                continue
            view = _build_field(column, ref_prefix, [], identity_column=None)
            view.flags = []
            if not col_ident.startswith(alias_base):
                view.ident = alias_base + col_ident
            view.title = f"{split_words(alias_base)} {split_words(col_ident)}"
            view.expression = f"{alias}.[{column['name']}]"
            view.omit_in_form = True
            view.omit_in_grid = True
            view_fields.append(view)

        text_field = _pick_name_field(view_fields)
        if text_field is not None:
            field.textual_field = text_field.ident
            text_field.omit_in_grid = False

        joins.append(EntityJoin(name=alias, source_field=field.ident, fields=view_fields))

    return joins
