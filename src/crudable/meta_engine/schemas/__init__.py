from crudable.meta_engine.schemas.definitions import (
    Action,
    FieldDef,
    FieldKind,
    RelationStrength,
    RoleDef,
    SchemaDef,
    SortSpec,
    TableDef,
)
from crudable.meta_engine.schemas.loader import get_schema, load_schema, parse_schema

__all__ = [
    "Action",
    "FieldDef",
    "FieldKind",
    "RelationStrength",
    "RoleDef",
    "SchemaDef",
    "SortSpec",
    "TableDef",
    "get_schema",
    "load_schema",
    "parse_schema",
]
