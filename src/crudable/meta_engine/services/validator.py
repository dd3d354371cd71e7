from datetime import date, datetime
from typing import Any, Dict, Optional

from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate

from crudable.exceptions import ForbiddenError, ValidationError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.permission.visibility import GrantedState, published_role
from crudable.meta_engine.schemas.definitions import PROTECTED_FIELDS, FieldDef, FieldKind
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.services.meta_schema_service import MetaSchemaService

_NULL_WHEN_EMPTY = {"integer", "int", "number", "float", "decimal", "enum", "date", "datetime", "boolean"}


class MetaValidator:
    """
    Handles validation and normalization of write payloads against table definitions.
    """

    def __init__(
        self,
        catalog: TableCatalog,
        permissions: MetaPermissionService,
        schema_service: MetaSchemaService,
    ):
        self.catalog = catalog
        self.permissions = permissions
        self.schema_service = schema_service

    def validate_and_normalize(
        self,
        actor: Optional[Actor],
        table: str,
        payload: Dict[str, Any],
        *,
        action: str,
    ) -> Dict[str, Any]:
        """
        Keep the declared, writable fields of ``payload``, cast and validated.

        System fields other than ``granted`` and anything undeclared are
        dropped; computed fields are ignored. Writing a read-only field, a
        field whose grant map excludes ``action``, or an orderable position
        column on update raises ``ForbiddenError``.
        """
        table = self.catalog.require_table(table)
        fields = self.catalog.fields_of(table)
        position_columns = self._position_columns(table)

        normalized: Dict[str, Any] = {}
        for name, value in (payload or {}).items():
            if name in PROTECTED_FIELDS or name.startswith("_"):
                continue
            if name == "granted":
                normalized[name] = self._granted(actor, table, value)
                continue
            field_def = fields.get(name)
            if field_def is None or field_def.kind is FieldKind.COMPUTED:
                continue
            if field_def.readonly:
                raise ForbiddenError(action, f"{table}.{name}", reason="readonly")
            if action == "update" and name in position_columns:
                raise ForbiddenError(action, f"{table}.{name}", reason="position column")
            if not self.permissions.field_allowed(actor, table, name, action):
                raise ForbiddenError(action, f"{table}.{name}")
            normalized[name] = self._cast_value(name, field_def, value)

        if action == "create":
            for name, field_def in fields.items():
                if name in normalized or not field_def.is_physical:
                    continue
                if field_def.default is not None:
                    normalized[name] = self._cast_value(name, field_def, field_def.default)
                elif field_def.required:
                    raise ValidationError(f"Field '{name}' is required", field=name)

        schema = self.schema_service.get_json_schema(table)
        try:
            validate(instance=_jsonable(normalized), schema=schema)
        except JSONSchemaValidationError as exc:
            field_name = exc.path[0] if exc.path else None
            raise ValidationError(
                f"Payload does not conform to {table}: {exc.message}", field=field_name
            ) from exc
        return normalized

    def _granted(self, actor: Optional[Actor], table: str, value: Any) -> Optional[str]:
        if value is None or value == "":
            return value
        value = str(value)
        if value not in {GrantedState.draft.value, GrantedState.shared.value} and (
            published_role(value) is None
        ):
            raise ValidationError(f"Unknown visibility state: {value!r}", field="granted")
        if published_role(value) is not None and not self.permissions.can_perform(
            actor, table, "publish"
        ):
            raise ForbiddenError("publish", table)
        return value

    def _position_columns(self, table: str) -> set:
        """Position columns of ``table`` maintained by the reorder service."""
        return {
            self.catalog.field(table, name).orderable
            for name in self.catalog.orderable_relations(table)
        }

    def _cast_value(self, name: str, field_def: FieldDef, value: Any) -> Any:
        """Cast value according to the field type."""
        data_type = (field_def.type or "").lower()
        if field_def.relation:
            data_type = "integer"

        if value is None:
            return None
        if value == "" and data_type in _NULL_WHEN_EMPTY:
            return None

        try:
            if data_type in {"integer", "int"}:
                return int(value)
            if data_type in {"number", "float", "decimal"}:
                return float(value)
            if data_type == "boolean":
                if isinstance(value, bool):
                    return value
                if isinstance(value, str):
                    lowered = value.lower()
                    if lowered in {"true", "1", "yes", "y", "on"}:
                        return True
                    if lowered in {"false", "0", "no", "n", "off"}:
                        return False
                return bool(value)
            if data_type == "datetime":
                if isinstance(value, datetime):
                    return value
                return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            if data_type == "date":
                if isinstance(value, datetime):
                    return value.date()
                if isinstance(value, date):
                    return value
                return date.fromisoformat(str(value)[:10])
            if data_type in {"varchar", "string", "text", "enum"}:
                return str(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Field '{name}' expects {data_type}", field=name) from exc

        # Default passthrough
        return value


def _jsonable(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: (v.isoformat() if isinstance(v, (date, datetime)) else v) for k, v in values.items()
    }
