from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from crudable.exceptions import ForbiddenError, TransactionFailedError, ValidationError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderableConfig:
    table: str
    relation_field: str
    parent_table: str
    position_column: str


@dataclass(frozen=True)
class ReorderResult:
    table: str
    parent_id: Any
    updated: int


class ReorderService:
    """
    Owns the position column of ordered child collections.

    Positions are the 0-based index of each row in the list handed to
    ``reorder``; new rows get ``max + 1`` through ``next_position``.
    Concurrent reorders of the same parent are not serialized here.
    """

    def __init__(self, store, catalog: TableCatalog, permissions: MetaPermissionService):
        self.store = store
        self.catalog = catalog
        self.permissions = permissions

    def orderable_config(self, table: str, relation_field: str) -> Optional[OrderableConfig]:
        table = self.catalog.require_table(table)
        field_def = self.catalog.field(table, relation_field)
        if field_def is None or not field_def.relation or not field_def.orderable:
            return None
        return OrderableConfig(
            table=table,
            relation_field=relation_field,
            parent_table=field_def.relation,
            position_column=field_def.orderable,
        )

    def orderable_relations(self, table: str) -> List[OrderableConfig]:
        """Ordered child collections of ``table`` (as the parent side)."""
        table = self.catalog.require_table(table)
        configs = []
        for rel in self.catalog.relations_of(table).one_to_many.values():
            if rel.orderable:
                configs.append(self.orderable_config(rel.source_table, rel.source_field))
        return configs

    def reorder(
        self,
        table: str,
        relation_field: str,
        parent_id: Any,
        ordered_ids: Sequence[Any],
        actor: Optional[Actor],
    ) -> ReorderResult:
        table = self.catalog.require_table(table)
        config = self.orderable_config(table, relation_field)
        if config is None:
            raise ValidationError(
                f"{table}.{relation_field} is not an orderable relation", field=relation_field
            )
        if not self.permissions.can_perform(actor, table, "update"):
            raise ForbiddenError("update", table)

        ids = [_normalize_id(i) for i in ordered_ids]
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate ids in ordering", field="ordered_ids")

        q = self.store.quote
        select_sql = (
            f"SELECT {q('id')} FROM {q(table)} WHERE {q(relation_field)} = :parent"
        )
        update_sql = (
            f"UPDATE {q(table)} SET {q(config.position_column)} = :position "
            f"WHERE {q('id')} = :id AND {q(relation_field)} = :parent"
        )

        try:
            with self.store.transaction() as tx:
                siblings = {_normalize_id(r["id"]) for r in tx.query(select_sql, {"parent": parent_id})}
                if siblings != set(ids):
                    missing = sorted(siblings - set(ids), key=str)
                    foreign = sorted(set(ids) - siblings, key=str)
                    raise ValidationError(
                        "Ordered ids do not match the rows under this parent",
                        field="ordered_ids",
                        missing=missing,
                        unexpected=foreign,
                    )
                for position, row_id in enumerate(ids):
                    tx.execute(update_sql, {"position": position, "id": row_id, "parent": parent_id})
        except SQLAlchemyError as exc:
            raise TransactionFailedError("reorder", exc, table=table) from exc

        logger.info("Reordered %d %s rows under %s=%s", len(ids), table, relation_field, parent_id)
        return ReorderResult(table=table, parent_id=parent_id, updated=len(ids))

    def next_position(self, executor, table: str, relation_field: str, parent_id: Any) -> int:
        """Position after the last sibling under ``parent_id``."""
        config = self.orderable_config(table, relation_field)
        if config is None:
            raise ValidationError(
                f"{table}.{relation_field} is not an orderable relation", field=relation_field
            )
        q = self.store.quote
        rows = executor.query(
            f"SELECT MAX({q(config.position_column)}) AS max_position FROM {q(config.table)} "
            f"WHERE {q(relation_field)} = :parent",
            {"parent": parent_id},
        )
        current = rows[0]["max_position"] if rows else None
        return 0 if current is None else int(current) + 1

    def assign_positions(self, executor, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Set position columns of a new row whose parent key is present."""
        for relation_field in self.catalog.orderable_relations(table):
            parent_id = values.get(relation_field)
            if parent_id is None:
                continue
            column = self.catalog.field(table, relation_field).orderable
            values[column] = self.next_position(executor, table, relation_field, parent_id)
        return values


def _normalize_id(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lstrip("-").isdigit():
        return int(value)
    return value
