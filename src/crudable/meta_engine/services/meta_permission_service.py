from __future__ import annotations

from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional

from crudable.meta_engine.permission.roles import Actor, ActorRoleResolver
from crudable.meta_engine.schemas.definitions import ALL_ACTIONS, Action
from crudable.meta_engine.services.catalog import TableCatalog


class MetaPermissionService:
    """
    Table-level and field-level permission checks.

    A table grant map lists, per role, the actions that role may perform.
    Field grant maps override visibility (and writability) of single fields.
    Row-level rules live in ``RowVisibility``.
    """

    def __init__(self, catalog: TableCatalog, resolver: ActorRoleResolver):
        self.catalog = catalog
        self.resolver = resolver

    def effective_roles(self, actor: Optional[Actor]) -> FrozenSet[str]:
        return self.resolver.effective_roles(actor)

    def can_perform(self, actor: Optional[Actor], table: str, action: str) -> bool:
        """
        Check if actor may perform ``action`` on ``table``.

        Unknown tables are never permitted.
        """
        resolved = self.catalog.resolve_table_name(table)
        if resolved is None:
            return False
        grants = self.catalog.table_grants(resolved)
        return self._granted(grants, self.effective_roles(actor), _action_name(action))

    def table_permissions(self, actor: Optional[Actor], table: str) -> Dict[str, bool]:
        roles = self.effective_roles(actor)
        grants = self.catalog.table_grants(table)
        return {action: self._granted(grants, roles, action) for action in ALL_ACTIONS}

    def all_permissions(self, actor: Optional[Actor]) -> Dict[str, List[str]]:
        """Table name -> actions the actor holds, for tables with at least one."""
        roles = self.effective_roles(actor)
        result: Dict[str, List[str]] = {}
        for table in self.catalog.table_names():
            grants = self.catalog.table_grants(table)
            allowed = [a for a in ALL_ACTIONS if self._granted(grants, roles, a)]
            if allowed:
                result[table] = allowed
        return result

    def accessible_tables(self, actor: Optional[Actor], action: str = "read") -> List[str]:
        return [t for t in self.catalog.table_names() if self.can_perform(actor, t, action)]

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def field_readable(self, actor: Optional[Actor], table: str, field: str) -> bool:
        return self.field_allowed(actor, table, field, Action.read.value)

    def field_allowed(
        self, actor: Optional[Actor], table: str, field: str, action: str
    ) -> bool:
        """Fields without a grant map follow the row; others need a listed role."""
        field_def = self.catalog.field(table, field)
        if field_def is None or field_def.grant is None:
            return True
        return self._granted(field_def.grant, self.effective_roles(actor), _action_name(action))

    def readable_fields(self, actor: Optional[Actor], table: str) -> List[str]:
        return [
            name
            for name in self.catalog.fields_of(table)
            if self.field_readable(actor, table, name)
        ]

    def filter_fields(
        self, actor: Optional[Actor], table: str, entity: Optional[Mapping[str, Any]]
    ) -> Optional[Dict[str, Any]]:
        """
        Drop the fields the actor may not read.

        Keys not declared on the table (system fields, ``_relations``,
        ``_table``, computed aliases) pass through.
        """
        if entity is None:
            return None
        roles = self.effective_roles(actor)
        fields = self.catalog.fields_of(table)
        filtered: Dict[str, Any] = {}
        for key, value in entity.items():
            field_def = fields.get(key)
            if field_def is not None and field_def.grant is not None:
                if not self._granted(field_def.grant, roles, Action.read.value):
                    continue
            filtered[key] = value
        return filtered

    @staticmethod
    def _granted(
        grants: Mapping[str, Iterable[str]], roles: FrozenSet[str], action: str
    ) -> bool:
        for role in roles:
            if action in grants.get(role, ()):
                return True
        return False


def _action_name(action: Any) -> str:
    return action.value if isinstance(action, Action) else str(action)
