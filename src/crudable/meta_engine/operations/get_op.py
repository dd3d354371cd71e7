from typing import Any, Dict

from .base import BaseOperation
from crudable.meta_engine.schemas.requests import CrudItem


class GetOperation(BaseOperation):
    """
    Handles 'get': one row when an id is given, a page of rows otherwise.
    """

    def execute(self, table: str, item: CrudItem) -> Dict[str, Any]:
        guard = self.engine.guard
        if item.id is not None:
            result = guard.fetch_one(self.actor, table, item.id, item.options)
        else:
            result = guard.fetch_many(self.actor, table, item.options)
        return result.to_dict()
