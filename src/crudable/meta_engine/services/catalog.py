"""
Read-only view over the loaded schema.

The catalog answers structural questions only (which tables, fields and
relations exist); it knows nothing about actors. Relation lookups return the
N:1 side straight from field metadata and compute the inverse 1:N side by
scanning every table for fields pointing back at the requested one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from crudable.exceptions import NotFoundError, ValidationError
from crudable.meta_engine.schemas.definitions import (
    IDENTIFIER_RE,
    SYSTEM_FIELDS,
    FieldDef,
    FieldKind,
    RelationStrength,
    SchemaDef,
    SortSpec,
    TableDef,
)

TEXT_TYPES = frozenset({"varchar", "text", "enum", "string"})


@dataclass(frozen=True)
class ManyToOne:
    field: str
    target_table: str
    foreign_key: str
    array_name: Optional[str]
    strength: RelationStrength


@dataclass(frozen=True)
class OneToMany:
    name: str
    source_table: str
    source_field: str
    foreign_key: str
    strength: RelationStrength
    default_sort: Tuple[SortSpec, ...] = ()
    orderable: Optional[str] = None


@dataclass(frozen=True)
class TableRelations:
    many_to_one: Dict[str, ManyToOne] = field(default_factory=dict)
    one_to_many: Dict[str, OneToMany] = field(default_factory=dict)

    def names(self) -> List[str]:
        return list(self.many_to_one) + list(self.one_to_many)


class TableCatalog:
    def __init__(self, schema: SchemaDef):
        self.schema = schema
        self._by_lower: Dict[str, str] = {name.lower(): name for name in schema.tables}
        self._relations: Dict[str, TableRelations] = {
            name: self._build_relations(name) for name in schema.tables
        }

    # ------------------------------------------------------------------
    # Tables
    # ------------------------------------------------------------------

    def table_names(self) -> List[str]:
        return list(self.schema.tables.keys())

    def resolve_table_name(self, name: Optional[str]) -> Optional[str]:
        if not name:
            return None
        if name in self.schema.tables:
            return name
        return self._by_lower.get(str(name).lower())

    def require_table(self, name: Optional[str]) -> str:
        resolved = self.resolve_table_name(name)
        if resolved is None:
            raise NotFoundError("Table", name)
        return resolved

    def table(self, name: str) -> TableDef:
        return self.schema.tables[self.require_table(name)]

    def table_grants(self, name: str) -> Dict[str, Tuple[str, ...]]:
        table = self.table(name)
        if table.granted is None:
            return self.schema.default_grants
        return table.granted

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def fields_of(self, table: str) -> Dict[str, FieldDef]:
        return self.table(table).fields

    def field(self, table: str, field_name: str) -> Optional[FieldDef]:
        return self.fields_of(table).get(field_name)

    def has_column(self, table: str, column: str) -> bool:
        """True for system fields and declared fields (computed ones included)."""
        return column in SYSTEM_FIELDS or column in self.fields_of(table)

    def physical_fields(self, table: str) -> List[str]:
        declared = [
            name for name, f in self.fields_of(table).items() if f.is_physical
        ]
        return list(SYSTEM_FIELDS) + [n for n in declared if n not in SYSTEM_FIELDS]

    def computed_fields(self, table: str) -> List[str]:
        return [
            name
            for name, f in self.fields_of(table).items()
            if f.kind is FieldKind.COMPUTED
        ]

    def text_fields(self, table: str) -> List[str]:
        return [
            name
            for name, f in self.fields_of(table).items()
            if f.is_physical and f.type.lower() in TEXT_TYPES
        ]

    def display_fields_of(self, table: str) -> List[str]:
        table_def = self.table(table)
        if table_def.display_fields:
            return list(table_def.display_fields)
        if "name" in table_def.fields:
            return ["name"]
        return []

    def column_identifier(self, table: str, column: str) -> str:
        """Return ``column`` once it is known to be a column of ``table``."""
        if not self.has_column(table, column) or not IDENTIFIER_RE.match(column):
            raise ValidationError(f"Unknown field {column!r} on {table}", field=column)
        return column

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def relations_of(self, table: str) -> TableRelations:
        return self._relations[self.require_table(table)]

    def find_foreign_key_field(self, table: str, related_table: str) -> Optional[str]:
        """First N:1 field of ``table`` pointing at ``related_table``."""
        related = self.resolve_table_name(related_table)
        if related is None:
            return None
        for field_name, rel in self.relations_of(table).many_to_one.items():
            if rel.target_table == related:
                return field_name
        return None

    def orderable_relations(self, table: str) -> Dict[str, ManyToOne]:
        """N:1 fields of ``table`` whose related rows carry a position column."""
        fields = self.fields_of(table)
        return {
            name: rel
            for name, rel in self.relations_of(table).many_to_one.items()
            if fields[name].orderable
        }

    def _build_relations(self, table: str) -> TableRelations:
        many_to_one: Dict[str, ManyToOne] = {}
        for field_name, field_def in self.schema.tables[table].fields.items():
            if field_def.kind is not FieldKind.RELATION:
                continue
            many_to_one[field_name] = ManyToOne(
                field=field_name,
                target_table=field_def.relation,
                foreign_key=field_def.foreign_key,
                array_name=field_def.array_name,
                strength=field_def.relationship_strength,
            )

        one_to_many: Dict[str, OneToMany] = {}
        for source_name, source in self.schema.tables.items():
            for field_name, field_def in source.fields.items():
                if field_def.kind is not FieldKind.RELATION or field_def.relation != table:
                    continue
                name = field_def.array_name or source_name
                if name in one_to_many:
                    # Two fields of one table pointing here without arrayName
                    name = f"{source_name}.{field_name}"
                one_to_many[name] = OneToMany(
                    name=name,
                    source_table=source_name,
                    source_field=field_name,
                    foreign_key=field_def.foreign_key,
                    strength=field_def.relationship_strength,
                    default_sort=field_def.default_sort,
                    orderable=field_def.orderable,
                )
        return TableRelations(many_to_one=many_to_one, one_to_many=one_to_many)
