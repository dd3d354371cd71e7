from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from crudable.config import get_settings
from crudable.meta_engine.permission.roles import Actor
from crudable.meta_engine.relationship.service import RelationResolver
from crudable.meta_engine.schemas.requests import FetchOptions
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.services.query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class SearchService:
    """Text search across every table the actor may read."""

    def __init__(
        self,
        store,
        catalog: TableCatalog,
        permissions: MetaPermissionService,
        visibility: RowVisibility,
        builder: QueryBuilder,
        relations: RelationResolver,
    ):
        self.store = store
        self.catalog = catalog
        self.permissions = permissions
        self.visibility = visibility
        self.builder = builder
        self.relations = relations

    def search_all(
        self, actor: Optional[Actor], term: str, *, limit: Optional[int] = None
    ) -> Dict[str, Any]:
        settings = get_settings()
        term = (term or "").strip()
        if len(term) < settings.SEARCH_MIN_LENGTH:
            return {"query": term, "results": {}, "total": 0}

        per_table = limit or settings.SEARCH_ALL_LIMIT
        results: Dict[str, List[Dict[str, Any]]] = {}
        for table in self.permissions.accessible_tables(actor, "read"):
            searchable = [
                name
                for name in self.catalog.text_fields(table)
                if self.permissions.field_readable(actor, table, name)
            ]
            if not searchable:
                continue
            query = self.builder.build_list(
                actor,
                table,
                FetchOptions(search=term),
                limit=per_table,
                search_min_length=settings.SEARCH_MIN_LENGTH,
            )
            try:
                rows = self.store.query(query.sql, query.params)
            except SQLAlchemyError as exc:
                logger.warning("Search in %s failed: %s", table, exc)
                continue

            hits = []
            for row in rows:
                if not self.visibility.can_access_row(actor, table, row):
                    continue
                hit = self.permissions.filter_fields(actor, table, row)
                hit["_table"] = table
                hit["_label"] = self.relations.label(table, hit)
                hits.append(hit)
            if hits:
                results[table] = hits

        total = sum(len(hits) for hits in results.values())
        logger.debug("search_all %r: %d hits in %d tables", term, total, len(results))
        return {"query": term, "results": results, "total": total}
