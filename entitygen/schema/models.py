"""Pydantic v2 models describing an entity to generate.

The schema reader fills these from database metadata; the templates only ever
see these models, never SQLAlchemy objects.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

_EDITOR_TYPES: dict[str, str] = {
    "String": "StringEditor",
    "Int16": "IntegerEditor",
    "Int32": "IntegerEditor",
    "Int64": "IntegerEditor",
    "Decimal": "DecimalEditor",
    "Double": "DecimalEditor",
    "Single": "DecimalEditor",
    "DateTime": "DateEditor",
    "Boolean": "BooleanEditor",
}


class EntityField(BaseModel):
    """One column (or joined view column) of the generated row."""

    ident: str = Field(..., description="Property name, e.g. CustomerId")
    name: str = Field(..., description="Column name as it appears in the table")
    title: str = ""
    field_type: str = Field(default="String", description="Field class stem, e.g. Int32")
    data_type: str = Field(default="String", description="C# type of the property")
    is_value_type: bool = False
    ts_type: str = "string"
    size: Optional[int] = None
    scale: Optional[int] = None
    flags: list[str] = Field(default_factory=list)
    pk_schema: Optional[str] = None
    pk_table: Optional[str] = None
    pk_field: Optional[str] = None
    foreign_join_alias: Optional[str] = None
    textual_field: Optional[str] = None
    expression: Optional[str] = None
    omit_in_grid: bool = False
    omit_in_form: bool = False

    @property
    def property_type(self) -> str:
        """``Int32?`` for value types, the plain type otherwise."""
        if self.is_value_type:
            return f"{self.data_type}?"
        return self.data_type

    @property
    def script_type(self) -> str:
        """Property type on the script side, where Guid, TimeSpan and Stream travel as strings."""
        if self.field_type in ("Guid", "TimeSpan", "Stream"):
            return "String"
        return self.property_type

    @property
    def editor_type(self) -> str:
        """Client-side editor widget for the form."""
        if self.is_foreign:
            return "LookupEditor"
        return _EDITOR_TYPES.get(self.field_type, "StringEditor")

    @property
    def is_identity(self) -> bool:
        return "Identity" in self.flags

    @property
    def is_foreign(self) -> bool:
        return self.pk_table is not None

    @property
    def attributes(self) -> list[str]:
        """Attribute declarations rendered above the property in the row class."""
        attrs = [f'DisplayName("{self.title}")']
        if self.expression:
            attrs.append(f'Expression("{self.expression}")')
        elif self.size:
            attrs.append(f"Size({self.size})")
            if self.scale:
                attrs.append(f"Scale({self.scale})")
        if self.name != self.ident and not self.expression:
            attrs.insert(0, f'Column("{self.name}")')
        if self.flags:
            attrs.append(", ".join(self.flags))
        if self.pk_table:
            pk = f'ForeignKey("{self.pk_table}", "{self.pk_field}")'
            if self.pk_schema:
                pk = f'ForeignKey("[{self.pk_schema}].[{self.pk_table}]", "{self.pk_field}")'
            attrs.append(pk)
            if self.foreign_join_alias:
                attrs.append(f'LeftJoin("{self.foreign_join_alias}")')
            if self.textual_field:
                attrs.append(f'TextualField("{self.textual_field}")')
        return attrs


class EntityJoin(BaseModel):
    """A left join to a referenced table, exposed as view fields."""

    name: str = Field(..., description="Join alias, e.g. jCustomer")
    source_field: str
    fields: list[EntityField] = Field(default_factory=list)


class EntityModel(BaseModel):
    """Everything the templates need to render one entity."""

    root_namespace: str
    module: Optional[str] = None
    connection_key: str
    permission: str = "Administration"
    schema_name: Optional[str] = Field(default=None, alias="schema")
    tablename: str
    title: str = ""
    identity: Optional[str] = None
    row_class_name: str
    class_name: str
    row_base_class: str = "Row"
    row_base_fields: list[str] = Field(default_factory=list)
    name_field: Optional[str] = None
    field_prefix: str = ""
    fields: list[EntityField] = Field(default_factory=list)
    joins: list[EntityJoin] = Field(default_factory=list)

    model_config = {"populate_by_name": True}

    # -- Derived names -----------------------------------------------------

    @property
    def module_or_namespace(self) -> str:
        """Folder name used under ``Modules``: the module, else the root namespace."""
        return self.module or self.root_namespace

    @property
    def dot_module(self) -> str:
        return f".{self.module}" if self.module else ""

    @property
    def module_dot(self) -> str:
        return f"{self.module}." if self.module else ""

    @property
    def namespace(self) -> str:
        """C# namespace of the generated entity, e.g. ``Northwind.Northwind``."""
        return f"{self.root_namespace}{self.dot_module}"

    @property
    def schema_and_table(self) -> str:
        if self.schema_name:
            return f"[{self.schema_name}].[{self.tablename}]"
        return f"[{self.tablename}]"

    @property
    def local_text_prefix(self) -> str:
        return f"{self.module_dot}{self.class_name}"

    @property
    def navigation_category(self) -> Optional[str]:
        return self.module

    @property
    def id_field(self) -> Optional[EntityField]:
        return self.get_field(self.identity)

    @property
    def name_field_info(self) -> Optional[EntityField]:
        return self.get_field(self.name_field)

    @property
    def instance(self) -> str:
        """Lower-camel name for local variables in generated code."""
        return self.class_name[:1].lower() + self.class_name[1:]

    @property
    def form_fields(self) -> list[EntityField]:
        return [f for f in self.fields if not f.omit_in_form and not f.is_identity]

    @property
    def grid_fields(self) -> list[EntityField]:
        """Columns list; a foreign key shows its textual join field instead."""
        result: list[EntityField] = []
        for field in self.fields:
            if field.omit_in_grid:
                continue
            textual = self.get_join_field(field.textual_field)
            result.append(textual or field)
        return result

    @property
    def all_fields(self) -> list[EntityField]:
        """Table fields followed by every joined view field."""
        result = list(self.fields)
        for join in self.joins:
            result.extend(join.fields)
        return result

    def get_field(self, ident: Optional[str]) -> Optional[EntityField]:
        if not ident:
            return None
        for field in self.fields:
            if field.ident == ident:
                return field
        return None

    def get_join_field(self, ident: Optional[str]) -> Optional[EntityField]:
        if not ident:
            return None
        for join in self.joins:
            for field in join.fields:
                if field.ident == ident:
                    return field
        return None
