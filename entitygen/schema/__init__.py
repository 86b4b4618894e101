"""Database metadata -> entity model.

Quick usage::

    from entitygen.schema import build_entity_model, open_engine

    engine = open_engine(config.get_connection("Northwind"))
    model = build_entity_model(
        engine, "Customers", config=config, connection_key="Northwind",
        module="Northwind",
    )
"""

from entitygen.schema.inspector import (
    SchemaError,
    build_entity_model,
    list_tables,
    open_engine,
)
from entitygen.schema.models import EntityField, EntityJoin, EntityModel

__all__ = [
    "EntityField",
    "EntityJoin",
    "EntityModel",
    "SchemaError",
    "build_entity_model",
    "list_tables",
    "open_engine",
]
