import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from .base import BaseOperation
from crudable.exceptions import ForbiddenError, TransactionFailedError, ValidationError
from crudable.meta_engine.schemas.requests import CrudAction, CrudItem

logger = logging.getLogger(__name__)


class DeleteOperation(BaseOperation):
    """
    Handles 'delete'. Rows are removed outright.
    """

    def execute(self, table: str, item: CrudItem) -> Dict[str, Any]:
        if item.id is None:
            raise ValidationError("Delete requires a row id", field="id")

        if not self.permission_service.can_perform(self.actor, table, "delete"):
            raise ForbiddenError(action=CrudAction.delete.value, resource=table)

        row = self.engine.guard.load_row(table, item.id)
        if not self.visibility.can_access_row(self.actor, table, row):
            raise ForbiddenError(action=CrudAction.delete.value, resource=table, id=item.id)

        q = self.store.quote
        try:
            self.store.execute(
                f"DELETE FROM {q(table)} WHERE {q('id')} = :row_id", {"row_id": row["id"]}
            )
        except SQLAlchemyError as exc:
            raise TransactionFailedError("delete", exc, table=table, id=item.id) from exc

        logger.info("Deleted %s %s", table, item.id)
        return {"id": row["id"], "table": table, "status": "deleted"}
