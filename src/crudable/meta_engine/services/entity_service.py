"""
Single entry point for reads.

``fetch_one`` and ``fetch_many`` apply, in order: the table-level ``read``
gate, row visibility, relation expansion and field filtering.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from crudable.config import get_settings
from crudable.exceptions import ForbiddenError, NotFoundError
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.relationship.service import RelationResolver
from crudable.meta_engine.schemas.definitions import SYSTEM_FIELDS
from crudable.meta_engine.schemas.requests import FetchOptions, FetchResult, Pagination
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.services.meta_schema_service import MetaSchemaService
from crudable.meta_engine.services.query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class EntityAccessGuard:
    def __init__(
        self,
        store,
        catalog: TableCatalog,
        permissions: MetaPermissionService,
        visibility: RowVisibility,
        relations: RelationResolver,
        builder: QueryBuilder,
        schema_service: MetaSchemaService,
    ):
        self.store = store
        self.catalog = catalog
        self.permissions = permissions
        self.visibility = visibility
        self.relations = relations
        self.builder = builder
        self.schema_service = schema_service

    def require(self, actor: Optional[Actor], table: str, action: str) -> str:
        """Resolve ``table`` and check the table-level ``action`` grant."""
        resolved = self.catalog.require_table(table)
        if not self.permissions.can_perform(actor, resolved, action):
            raise ForbiddenError(action, resolved)
        return resolved

    def load_row(self, table: str, row_id: Any, *, executor=None) -> Dict[str, Any]:
        """Raw row by id, without any permission check."""
        executor = executor or self.store
        sql, params = self.builder.select_by(table, "id", row_id)
        rows = executor.query(sql, params)
        if not rows:
            raise NotFoundError(table, row_id)
        return rows[0]

    def fetch_one(
        self, actor: Optional[Actor], table: str, row_id: Any, options: Optional[FetchOptions] = None
    ) -> FetchResult:
        options = options or FetchOptions()
        table = self.require(actor, table, "read")
        row = self.load_row(table, row_id)
        # Existence is confirmed before the row check: denial is Forbidden, not NotFound
        if not self.visibility.can_access_row(actor, table, row):
            raise ForbiddenError("read", table, id=row_id)

        result = FetchResult(row=self._present(actor, table, row, options))
        if options.include_schema:
            result.schema_ = self.schema_service.build_filtered_schema(actor, table)
        return result

    def fetch_many(
        self, actor: Optional[Actor], table: str, options: Optional[FetchOptions] = None
    ) -> FetchResult:
        options = options or FetchOptions()
        settings = get_settings()
        table = self.require(actor, table, "read")

        limit = options.limit if options.limit is not None else (settings.DEFAULT_PAGE_SIZE or None)
        if limit is not None:
            limit = min(limit, settings.MAX_PAGE_SIZE)
        elif options.offset:
            limit = settings.MAX_PAGE_SIZE

        query = self.builder.build_list(
            actor,
            table,
            options,
            limit=limit,
            search_min_length=settings.SEARCH_MIN_LENGTH,
        )
        rows = self.store.query(query.sql, query.params)
        total = int(self.store.query(query.count_sql, query.count_params)[0]["total"])

        visible: List[Dict[str, Any]] = []
        for row in rows:
            if not self.visibility.can_access_row(actor, table, row):
                continue
            visible.append(self._present(actor, table, row, options))

        logger.debug("fetch_many %s: %d/%d rows", table, len(visible), total)
        result = FetchResult(
            rows=visible,
            pagination=Pagination(
                total=total, count=len(visible), limit=limit, offset=options.offset
            ),
        )
        if options.include_schema:
            result.schema_ = self.schema_service.build_filtered_schema(actor, table)
        return result

    def _present(
        self, actor: Optional[Actor], table: str, row: Dict[str, Any], options: FetchOptions
    ) -> Dict[str, Any]:
        """Expand relations, filter fields and apply output options to one row."""
        entity = dict(row)
        relations = self.relations.resolve(
            actor,
            table,
            entity,
            options.relation,
            compact=options.compact,
            expand_nested=options.expand_nested,
        )
        entity = self.permissions.filter_fields(actor, table, entity)
        entity["_label"] = self.relations.label(table, entity)

        if options.field_selection:
            keep = set(options.field_selection) | {"id", "_label"}
            entity = {k: v for k, v in entity.items() if k in keep}
        if options.no_system_fields:
            entity = {k: v for k, v in entity.items() if k == "id" or k not in SYSTEM_FIELDS}
        if options.no_id:
            entity.pop("id", None)
        if relations:
            entity["_relations"] = relations
        return entity
