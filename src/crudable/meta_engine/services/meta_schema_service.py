import hashlib
import json
from typing import Any, Dict, Optional

from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.schemas.definitions import ALL_ACTIONS, FieldDef, FieldKind
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService

_JSON_TYPES = {
    "integer": ["integer"],
    "int": ["integer"],
    "number": ["number"],
    "float": ["number"],
    "decimal": ["number"],
    "boolean": ["boolean", "integer"],
    "varchar": ["string"],
    "string": ["string"],
    "text": ["string"],
    "date": ["string"],
    "datetime": ["string"],
}


class MetaSchemaService:
    """
    Schema descriptions derived from the catalog.

    Descriptions handed to callers are filtered by what the actor may read;
    the JSON schema used for payload validation is not.
    """

    def __init__(self, catalog: TableCatalog, permissions: MetaPermissionService):
        self.catalog = catalog
        self.permissions = permissions

    def get_json_schema(self, table: str) -> Dict[str, Any]:
        """JSON Schema of the writable (physical, declared) fields of a table."""
        table = self.catalog.require_table(table)
        table_def = self.catalog.table(table)
        schema: Dict[str, Any] = {
            "type": "object",
            "title": table,
            "properties": {},
        }
        if table_def.description:
            schema["description"] = table_def.description
        for name, field_def in table_def.fields.items():
            if not field_def.is_physical:
                continue
            schema["properties"][name] = self._json_property(field_def)
        return schema

    def get_schema_etag(self, table: str) -> str:
        schema_str = json.dumps(self.get_json_schema(table), sort_keys=True)
        return hashlib.md5(schema_str.encode("utf-8")).hexdigest()

    def build_filtered_schema(self, actor: Optional[Actor], table: str) -> Dict[str, Any]:
        """
        Field and relation description restricted to what ``actor`` may read.
        """
        table = self.catalog.require_table(table)
        fields: Dict[str, Any] = {}
        for name, field_def in self.catalog.fields_of(table).items():
            if not self.permissions.field_readable(actor, table, name):
                continue
            if field_def.relation and not self.permissions.can_perform(
                actor, field_def.relation, "read"
            ):
                continue
            fields[name] = self._describe_field(field_def)

        return {
            "table": table,
            "fields": fields,
            "relations": self._relations(actor, table, accessible=True),
            "displayFields": self.catalog.display_fields_of(table),
            "permissions": self.permissions.table_permissions(actor, table),
        }

    def table_structure(self, actor: Optional[Actor], table: str) -> Dict[str, Any]:
        table = self.catalog.require_table(table)
        structure = self.build_filtered_schema(actor, table)
        structure["inaccessibleRelations"] = self._relations(actor, table, accessible=False)
        return structure

    def _relations(self, actor: Optional[Actor], table: str, *, accessible: bool) -> Dict[str, Any]:
        relations = self.catalog.relations_of(table)
        n1 = {}
        for name, rel in relations.many_to_one.items():
            if self.permissions.can_perform(actor, rel.target_table, "read") is accessible:
                n1[name] = {
                    "type": "n:1",
                    "relatedTable": rel.target_table,
                    "foreignKey": rel.foreign_key,
                    "strength": rel.strength.value,
                }
        one_n = {}
        for name, rel in relations.one_to_many.items():
            if self.permissions.can_perform(actor, rel.source_table, "read") is accessible:
                entry: Dict[str, Any] = {
                    "type": "1:n",
                    "relatedTable": rel.source_table,
                    "relatedField": rel.source_field,
                    "strength": rel.strength.value,
                }
                if rel.orderable:
                    entry["orderable"] = rel.orderable
                if rel.default_sort:
                    entry["defaultSort"] = [s.model_dump() for s in rel.default_sort]
                one_n[name] = entry
        return {"n1": n1, "1n": one_n}

    @staticmethod
    def _describe_field(field_def: FieldDef) -> Dict[str, Any]:
        description: Dict[str, Any] = {
            "type": field_def.type,
            "kind": field_def.kind.value,
            "computed": field_def.kind is FieldKind.COMPUTED,
        }
        if field_def.relation:
            description["relation"] = field_def.relation
            description["foreignKey"] = field_def.foreign_key
            if field_def.array_name:
                description["arrayName"] = field_def.array_name
            if field_def.orderable:
                description["orderable"] = field_def.orderable
        if field_def.values:
            description["values"] = list(field_def.values)
        if field_def.readonly:
            description["readonly"] = True
        if field_def.required:
            description["required"] = True
        if field_def.grant is not None:
            description["grant"] = {
                role: [a for a in ALL_ACTIONS if a in actions]
                for role, actions in field_def.grant.items()
            }
        return description

    @staticmethod
    def _json_property(field_def: FieldDef) -> Dict[str, Any]:
        if field_def.relation:
            return {"type": ["integer", "string", "null"]}
        if field_def.type.lower() == "enum" and field_def.values:
            return {"enum": list(field_def.values) + [None]}
        types = _JSON_TYPES.get(field_def.type.lower(), ["string", "number", "boolean"])
        return {"type": types + ["null"]}
