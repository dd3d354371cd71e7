"""
Relation Service
Loads the related entities of a row into its ``_relations`` map.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Union

from crudable.exceptions import ValidationError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.schemas.definitions import RelationStrength
from crudable.meta_engine.services.catalog import ManyToOne, OneToMany, TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.services.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

ALL_RELATIONS = "all"
RELATION_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_ .\-]{0,127}$")

RelationRequest = Union[str, Sequence[str], None]


def _empty_key(value: Any) -> bool:
    return value is None or value == "" or value == 0 or value == "0"


class RelationResolver:
    """关系解析服务"""

    def __init__(
        self,
        store,
        catalog: TableCatalog,
        permissions: MetaPermissionService,
        visibility: RowVisibility,
        builder: QueryBuilder,
    ):
        self.store = store
        self.catalog = catalog
        self.permissions = permissions
        self.visibility = visibility
        self.builder = builder

    # ------------------------------------------------------------------
    # Relation sets
    # ------------------------------------------------------------------

    def readable_many_to_one(self, actor: Optional[Actor], table: str) -> Dict[str, ManyToOne]:
        return {
            name: rel
            for name, rel in self.catalog.relations_of(table).many_to_one.items()
            if self.permissions.can_perform(actor, rel.target_table, "read")
        }

    def readable_one_to_many(self, actor: Optional[Actor], table: str) -> Dict[str, OneToMany]:
        return {
            name: rel
            for name, rel in self.catalog.relations_of(table).one_to_many.items()
            if self.permissions.can_perform(actor, rel.source_table, "read")
        }

    def relation_names(
        self, actor: Optional[Actor], table: str, requested: RelationRequest = None
    ) -> List[str]:
        """
        Resolve a relation request to relation names.

        Args:
            requested: ``"all"``, a comma separated string, a list of names,
                or None for the default policy (readable N:1 relations plus
                readable Strong 1:N relations).

        Returns:
            Names in request order. Explicit names are returned as given;
            names that do not apply are dropped later while loading.
        """
        if requested is None:
            n1 = list(self.readable_many_to_one(actor, table))
            strong = [
                name
                for name, rel in self.readable_one_to_many(actor, table).items()
                if rel.strength is RelationStrength.STRONG
            ]
            return n1 + strong

        if isinstance(requested, str):
            if requested.strip() == ALL_RELATIONS:
                return list(self.readable_many_to_one(actor, table)) + list(
                    self.readable_one_to_many(actor, table)
                )
            names = requested.split(",")
        else:
            names = list(requested)

        result: List[str] = []
        for raw in names:
            name = str(raw).strip()
            if not name:
                continue
            if not RELATION_NAME_RE.match(name):
                raise ValidationError(f"Malformed relation name: {name!r}", field="relation")
            if name not in result:
                result.append(name)
        return result

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def resolve(
        self,
        actor: Optional[Actor],
        table: str,
        row: Dict[str, Any],
        requested: RelationRequest = None,
        *,
        compact: bool = False,
        expand_nested: bool = True,
        executor=None,
    ) -> Dict[str, Any]:
        """
        Build the ``_relations`` map of ``row``.

        Relations the actor may not read, or that resolve to nothing, are
        absent from the result.
        """
        executor = executor or self.store
        table = self.catalog.require_table(table)
        names = self.relation_names(actor, table, requested)
        many_to_one = self.readable_many_to_one(actor, table)
        one_to_many = self.readable_one_to_many(actor, table)

        relations: Dict[str, Any] = {}
        for name in names:
            if name in many_to_one:
                related = self._load_many_to_one(
                    executor, actor, row, many_to_one[name], compact=compact
                )
                if related:
                    relations[name] = related
            elif name in one_to_many:
                children = self._load_one_to_many(
                    executor,
                    actor,
                    table,
                    row,
                    one_to_many[name],
                    compact=compact,
                    expand_nested=expand_nested,
                )
                if children:
                    relations[name] = children
        return relations

    def attach(
        self,
        actor: Optional[Actor],
        table: str,
        row: Dict[str, Any],
        requested: RelationRequest = None,
        **kwargs: Any,
    ) -> Dict[str, Any]:
        relations = self.resolve(actor, table, row, requested, **kwargs)
        if relations:
            row["_relations"] = relations
        return row

    def _load_many_to_one(
        self,
        executor,
        actor: Optional[Actor],
        row: Dict[str, Any],
        rel: ManyToOne,
        *,
        compact: bool,
    ) -> Optional[Dict[str, Any]]:
        value = row.get(rel.field)
        if _empty_key(value):
            return None

        sql, params = self.builder.select_by(rel.target_table, rel.foreign_key, value)
        rows = executor.query(sql, params)
        if not rows:
            return None
        related = rows[0]
        if not self.visibility.can_access_row(actor, rel.target_table, related):
            return None

        related = self.permissions.filter_fields(actor, rel.target_table, related)
        related["_table"] = rel.target_table
        if compact:
            return self.compact(related, rel.target_table)
        return related

    def _load_one_to_many(
        self,
        executor,
        actor: Optional[Actor],
        parent_table: str,
        row: Dict[str, Any],
        rel: OneToMany,
        *,
        compact: bool,
        expand_nested: bool,
    ) -> List[Dict[str, Any]]:
        parent_key = row.get(rel.foreign_key)
        if _empty_key(parent_key):
            return []

        order = self.builder.order_clause(rel.source_table, rel.default_sort) or None
        sql, params = self.builder.select_by(
            rel.source_table, rel.source_field, parent_key, order=order
        )

        children: List[Dict[str, Any]] = []
        nested = (
            self.readable_many_to_one(actor, rel.source_table) if expand_nested else {}
        )
        for child in executor.query(sql, params):
            if not self.visibility.can_access_row(actor, rel.source_table, child):
                continue
            child = self.permissions.filter_fields(actor, rel.source_table, child)
            child["_table"] = rel.source_table

            sub_relations: Dict[str, Any] = {}
            for name, sub in nested.items():
                # Never embed the parent again below its own children
                if sub.target_table == parent_table:
                    continue
                related = self._load_many_to_one(executor, actor, child, sub, compact=compact)
                if related:
                    sub_relations[name] = related
            if sub_relations:
                child["_relations"] = sub_relations
            children.append(child)

        logger.debug(
            "Loaded %d %s rows for %s.%s",
            len(children),
            rel.source_table,
            parent_table,
            rel.name,
        )
        return children

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def compact(self, entity: Dict[str, Any], table: Optional[str] = None) -> Dict[str, Any]:
        """Reduce an entity to ``_table``, ``id`` and its display fields."""
        table = table or entity.get("_table")
        keys = ["_table", "id"]
        if table and self.catalog.resolve_table_name(table):
            keys += self.catalog.display_fields_of(table)
        compacted = {k: entity[k] for k in keys if k in entity}
        if table and "_table" not in compacted:
            compacted["_table"] = self.catalog.resolve_table_name(table) or table
        return compacted

    def label(self, table: str, entity: Dict[str, Any]) -> str:
        values = [
            str(entity[f])
            for f in self.catalog.display_fields_of(table)
            if entity.get(f) not in (None, "")
        ]
        return " ".join(values)
