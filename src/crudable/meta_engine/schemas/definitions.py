"""
Declarative schema models.

A schema document declares the role hierarchy and every table: its fields,
table-level grants, field-level grants, relation metadata and display fields.
The document is validated once into these frozen models; everything downstream
reads them and never mutates them.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Columns every physical table carries, whatever the table declares.
SYSTEM_FIELDS: Tuple[str, ...] = ("id", "ownerId", "granted", "createdAt", "updatedAt")
# System fields callers can never write.
PROTECTED_FIELDS: Tuple[str, ...] = ("id", "ownerId", "createdAt", "updatedAt")


class Action(str, Enum):
    read = "read"
    create = "create"
    update = "update"
    delete = "delete"
    publish = "publish"


ALL_ACTIONS: Tuple[str, ...] = tuple(a.value for a in Action)


class FieldKind(str, Enum):
    """Closed set of field variants the engine dispatches on."""

    SCALAR = "scalar"
    RELATION = "relation"
    COMPUTED = "computed"


class RelationStrength(str, Enum):
    STRONG = "Strong"
    WEAK = "Weak"


class SortSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    order: str = "ASC"

    @field_validator("order")
    @classmethod
    def _upper_order(cls, value: str) -> str:
        value = (value or "ASC").upper()
        if value not in {"ASC", "DESC"}:
            raise ValueError(f"invalid sort order: {value}")
        return value


def _grant_map(value: Any) -> Dict[str, Tuple[str, ...]]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError("grant map must be a mapping of role -> actions")
    normalized: Dict[str, Tuple[str, ...]] = {}
    for role, actions in value.items():
        if isinstance(actions, str):
            actions = ALL_ACTIONS if actions == "all" else [actions]
        normalized[str(role)] = tuple(Action(a).value for a in (actions or []))
    return normalized


class RoleDef(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str = ""
    inherits: Tuple[str, ...] = Field(default=(), description="Parent role names")


class FieldDef(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    type: str = "varchar"
    values: Tuple[str, ...] = Field(default=(), description="Options of an enum field")

    relation: Optional[str] = None
    foreign_key: str = Field(default="id", alias="foreignKey")
    array_name: Optional[str] = Field(default=None, alias="arrayName")
    relationship_strength: RelationStrength = Field(
        default=RelationStrength.WEAK, alias="relationshipStrength"
    )
    default_sort: Tuple[SortSpec, ...] = Field(default=(), alias="defaultSort")
    orderable: Optional[str] = Field(
        default=None, description="Position column of the related rows"
    )

    grant: Optional[Dict[str, Tuple[str, ...]]] = None
    computed: bool = False
    expression: Optional[str] = Field(
        default=None, alias="as", description="SQL expression of a computed column"
    )
    readonly: bool = False
    required: bool = False
    default: Any = None

    @model_validator(mode="before")
    @classmethod
    def _type_shorthand(cls, data: Any) -> Any:
        # "name: varchar" is accepted for plain fields
        if isinstance(data, str):
            return {"type": data}
        return data

    @field_validator("grant", mode="before")
    @classmethod
    def _normalize_grant(cls, value: Any) -> Optional[Dict[str, Tuple[str, ...]]]:
        if value is None:
            return None
        return _grant_map(value)

    @field_validator("default_sort", mode="before")
    @classmethod
    def _normalize_sort(cls, value: Any) -> Any:
        if value is None:
            return ()
        if isinstance(value, (str, dict)):
            value = [value]
        return [{"field": v} if isinstance(v, str) else v for v in value]

    @field_validator("orderable")
    @classmethod
    def _orderable_identifier(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not IDENTIFIER_RE.match(value):
            raise ValueError(f"invalid orderable column: {value}")
        return value

    @property
    def kind(self) -> FieldKind:
        if self.computed or self.expression:
            return FieldKind.COMPUTED
        if self.relation:
            return FieldKind.RELATION
        return FieldKind.SCALAR

    @property
    def is_physical(self) -> bool:
        return self.kind is not FieldKind.COMPUTED


class TableDef(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    name: str = ""
    description: str = ""
    fields: Dict[str, FieldDef] = Field(default_factory=dict)
    granted: Optional[Dict[str, Tuple[str, ...]]] = Field(
        default=None, description="Table-level grants: role -> actions"
    )
    display_fields: Tuple[str, ...] = Field(default=(), alias="displayFields")

    @model_validator(mode="before")
    @classmethod
    def _single_display_field(cls, data: Any) -> Any:
        if isinstance(data, dict) and "displayField" in data and "displayFields" not in data:
            data = dict(data)
            data["displayFields"] = [data.pop("displayField")]
        return data

    @field_validator("granted", mode="before")
    @classmethod
    def _normalize_granted(cls, value: Any) -> Optional[Dict[str, Tuple[str, ...]]]:
        if value is None:
            return None
        return _grant_map(value)

    @field_validator("fields")
    @classmethod
    def _field_identifiers(cls, value: Dict[str, FieldDef]) -> Dict[str, FieldDef]:
        for field_name in value:
            if not IDENTIFIER_RE.match(field_name):
                raise ValueError(f"invalid field name: {field_name!r}")
        return value


class SchemaDef(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    roles: Dict[str, RoleDef] = Field(default_factory=dict)
    tables: Dict[str, TableDef] = Field(default_factory=dict)
    default_grants: Dict[str, Tuple[str, ...]] = Field(
        default_factory=lambda: {"dev": ALL_ACTIONS}, alias="defaultGrants"
    )

    @field_validator("default_grants", mode="before")
    @classmethod
    def _normalize_default_grants(cls, value: Any) -> Dict[str, Tuple[str, ...]]:
        return _grant_map(value)

    @field_validator("tables", mode="before")
    @classmethod
    def _name_tables(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        named: Dict[str, Any] = {}
        for table_name, table in value.items():
            if not IDENTIFIER_RE.match(str(table_name)):
                raise ValueError(f"invalid table name: {table_name!r}")
            if isinstance(table, dict):
                table = {**table, "name": table_name}
            named[table_name] = table
        return named

    @model_validator(mode="after")
    def _check_relations(self) -> "SchemaDef":
        lowered: Dict[str, str] = {}
        for table_name, table in self.tables.items():
            key = table_name.lower()
            if key in lowered:
                raise ValueError(
                    f"tables {lowered[key]!r} and {table_name!r} differ only by case"
                )
            lowered[key] = table_name
            for field_name, field_def in table.fields.items():
                if field_def.relation and field_def.relation not in self.tables:
                    raise ValueError(
                        f"{table_name}.{field_name} relates to unknown table "
                        f"{field_def.relation!r}"
                    )
        return self

    def table_names(self) -> List[str]:
        return list(self.tables.keys())
