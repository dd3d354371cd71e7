from typing import Any, Dict, List, Optional, Sequence, Union

from crudable.database import Store
from crudable.meta_engine.permission.roles import Actor, ActorRoleResolver, RoleGraph
from crudable.meta_engine.permission.visibility import RowVisibility
from crudable.meta_engine.relationship.service import RelationResolver
from crudable.meta_engine.schemas.requests import CrudAction, CrudItem, FetchOptions
from crudable.meta_engine.services.catalog import TableCatalog
from crudable.meta_engine.services.duplication_service import DuplicationResult, DuplicationService
from crudable.meta_engine.services.entity_service import EntityAccessGuard
from crudable.meta_engine.services.meta_permission_service import MetaPermissionService
from crudable.meta_engine.services.meta_schema_service import MetaSchemaService
from crudable.meta_engine.services.query_builder import QueryBuilder
from crudable.meta_engine.services.reorder_service import ReorderResult, ReorderService
from crudable.meta_engine.services.search_service import SearchService
from crudable.meta_engine.services.validator import MetaValidator


class CrudEngine:
    """
    Request-scoped facade: one actor, one store, the shared catalog.

    Nothing here is cached between requests; build one engine per request.
    """

    def __init__(self, store: Store, catalog: TableCatalog, actor: Optional[Actor] = None):
        self.store = store
        self.catalog = catalog
        self.actor = actor or Actor.anonymous()

        self.roles = RoleGraph(catalog.schema.roles)
        self.permission_service = MetaPermissionService(catalog, ActorRoleResolver(self.roles))
        self.visibility = RowVisibility(self.permission_service, quote=store.quote)
        self.builder = QueryBuilder(catalog, self.permission_service, self.visibility, store.quote)
        self.schema_service = MetaSchemaService(catalog, self.permission_service)
        self.validator = MetaValidator(catalog, self.permission_service, self.schema_service)
        self.relations = RelationResolver(
            store, catalog, self.permission_service, self.visibility, self.builder
        )
        self.guard = EntityAccessGuard(
            store,
            catalog,
            self.permission_service,
            self.visibility,
            self.relations,
            self.builder,
            self.schema_service,
        )
        self.reorder_service = ReorderService(store, catalog, self.permission_service)
        self.duplication_service = DuplicationService(
            store, catalog, self.permission_service, self.visibility, self.builder
        )
        self.search_service = SearchService(
            store,
            catalog,
            self.permission_service,
            self.visibility,
            self.builder,
            self.relations,
        )

    def apply(self, item: CrudItem) -> Dict[str, Any]:
        """
        Dispatch one request to its operation.
        """
        from crudable.meta_engine.operations.add_op import AddOperation
        from crudable.meta_engine.operations.delete_op import DeleteOperation
        from crudable.meta_engine.operations.get_op import GetOperation
        from crudable.meta_engine.operations.update_op import UpdateOperation

        # 1. Resolve the table (NotFound for unknown names)
        table = self.catalog.require_table(item.table)

        # 2. Dispatch
        if item.action == CrudAction.add:
            return AddOperation(self).execute(table, item)
        if item.action == CrudAction.get:
            return GetOperation(self).execute(table, item)
        if item.action == CrudAction.update:
            return UpdateOperation(self).execute(table, item)
        if item.action == CrudAction.delete:
            return DeleteOperation(self).execute(table, item)
        raise ValueError(f"Unsupported action: {item.action}")

    # ----------------------------------------------------
    #  Convenience wrappers
    # ----------------------------------------------------

    def get(self, table: str, row_id: Any, **options: Any) -> Dict[str, Any]:
        return self.apply(
            CrudItem(table=table, id=row_id, options=FetchOptions(**options))
        )

    def list(self, table: str, **options: Any) -> Dict[str, Any]:
        return self.apply(CrudItem(table=table, options=FetchOptions(**options)))

    def create(self, table: str, data: Dict[str, Any]) -> Any:
        return self.apply(CrudItem(table=table, action=CrudAction.add, data=data))["id"]

    def update(self, table: str, row_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.apply(
            CrudItem(table=table, action=CrudAction.update, id=row_id, data=data)
        )

    def delete(self, table: str, row_id: Any) -> Dict[str, Any]:
        return self.apply(CrudItem(table=table, action=CrudAction.delete, id=row_id))

    def reorder(
        self, table: str, relation_field: str, parent_id: Any, ordered_ids: Sequence[Any]
    ) -> ReorderResult:
        return self.reorder_service.reorder(
            table, relation_field, parent_id, ordered_ids, self.actor
        )

    def duplicate(
        self, table: str, row_id: Any, relations: Optional[Union[str, List[str]]] = None
    ) -> DuplicationResult:
        if isinstance(relations, str):
            relations = [r.strip() for r in relations.split(",") if r.strip()]
        return self.duplication_service.duplicate(table, row_id, self.actor, relations)

    def search(self, term: str, *, limit: Optional[int] = None) -> Dict[str, Any]:
        return self.search_service.search_all(self.actor, term, limit=limit)

    def describe(self, table: str) -> Dict[str, Any]:
        return self.schema_service.table_structure(self.actor, table)
