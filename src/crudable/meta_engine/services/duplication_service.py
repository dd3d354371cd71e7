"""
Deep duplication of an entity.

The copy gets a fresh id, the duplicating actor as owner and the ``draft``
state. Selected 1:N child collections are cloned with their foreign key
re-pointed to the copy. Each child relation runs in its own savepoint of the
parent transaction: a failing relation is rolled back and reported while the
others and the parent copy are kept.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from crudable.database import utcnow
from crudable.exceptions import CrudableError, ForbiddenError, NotFoundError, TransactionFailedError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.permission.visibility import GrantedState, RowVisibility
from crudable.meta_engine.services.catalog import OneToMany, TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.services.query_builder import QueryBuilder

logger = logging.getLogger(__name__)

_NOT_COPIED = frozenset({"id", "createdAt", "updatedAt"})


@dataclass
class RelationOutcome:
    name: str
    success: bool
    count: int = 0
    total: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "success": self.success,
            "count": self.count,
            "total": self.total,
        }
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class DuplicationResult:
    """Partial-success result: the copy exists, relations report individually."""

    table: str
    source_id: Any
    id: Any
    relations: List[RelationOutcome] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.id is not None

    @property
    def complete(self) -> bool:
        return all(outcome.success for outcome in self.relations)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "id": self.id,
            "sourceId": self.source_id,
            "relations": {o.name: o.to_dict() for o in self.relations},
        }


class DuplicationService:
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

    def duplicate(
        self,
        table: str,
        row_id: Any,
        actor: Optional[Actor],
        child_relations: Optional[Sequence[str]] = None,
    ) -> DuplicationResult:
        table = self.catalog.require_table(table)
        for action in ("read", "create"):
            if not self.permissions.can_perform(actor, table, action):
                raise ForbiddenError(action, table)

        try:
            with self.store.transaction() as tx:
                sql, params = self.builder.select_by(table, "id", row_id)
                rows = tx.query(sql, params)
                if not rows:
                    raise NotFoundError(table, row_id)
                source = rows[0]
                if not self.visibility.can_access_row(actor, table, source):
                    raise ForbiddenError("read", table, id=row_id)

                new_id = tx.insert(table, self.copy_values(table, source, actor))
                result = DuplicationResult(table=table, source_id=row_id, id=new_id)

                for name in child_relations or []:
                    result.relations.append(
                        self._duplicate_relation(tx, actor, table, source, new_id, name)
                    )
        except SQLAlchemyError as exc:
            raise TransactionFailedError("duplicate", exc, table=table, id=row_id) from exc

        logger.info(
            "Duplicated %s %s as %s (%d relation(s))",
            table,
            row_id,
            new_id,
            len(result.relations),
        )
        return result

    def copy_values(
        self,
        table: str,
        source: Dict[str, Any],
        actor: Optional[Actor],
        overrides: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Physical column values of a copy of ``source``."""
        columns = set(self.catalog.physical_fields(table))
        values = {
            k: v for k, v in source.items() if k in columns and k not in _NOT_COPIED
        }
        now = utcnow()
        values.update(
            {
                "ownerId": actor.id if actor is not None else None,
                "granted": GrantedState.draft.value,
                "createdAt": now,
                "updatedAt": now,
            }
        )
        if overrides:
            values.update(overrides)
        return values

    def find_child_relation(self, table: str, name: str) -> Optional[OneToMany]:
        """A 1:N relation by its name, or by its child table name."""
        one_to_many = self.catalog.relations_of(table).one_to_many
        if name in one_to_many:
            return one_to_many[name]
        child_table = self.catalog.resolve_table_name(name)
        if child_table is None:
            return None
        for rel in one_to_many.values():
            if rel.source_table == child_table:
                return rel
        return None

    def _duplicate_relation(
        self,
        tx,
        actor: Optional[Actor],
        table: str,
        source: Dict[str, Any],
        new_id: Any,
        name: str,
    ) -> RelationOutcome:
        rel = self.find_child_relation(table, name)
        if rel is None:
            return RelationOutcome(name=name, success=False, error="Relation not found")
        for action in ("read", "create"):
            if not self.permissions.can_perform(actor, rel.source_table, action):
                return RelationOutcome(
                    name=name, success=False, error=f"Permission denied: {action} {rel.source_table}"
                )

        sql, params = self.builder.select_by(
            rel.source_table, rel.source_field, source.get(rel.foreign_key)
        )
        new_key = new_id if rel.foreign_key == "id" else source.get(rel.foreign_key)
        count = 0
        total = 0
        try:
            with tx.savepoint():
                children = tx.query(sql, params)
                total = len(children)
                for child in children:
                    if not self.visibility.can_access_row(actor, rel.source_table, child):
                        continue
                    tx.insert(
                        rel.source_table,
                        self.copy_values(
                            rel.source_table, child, actor, {rel.source_field: new_key}
                        ),
                    )
                    count += 1
        except (SQLAlchemyError, CrudableError) as exc:
            logger.warning("Duplicating relation %s of %s failed: %s", name, table, exc)
            return RelationOutcome(name=name, success=False, count=0, total=total, error=str(exc))

        return RelationOutcome(name=name, success=True, count=count, total=total)
