import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from .base import BaseOperation
from crudable.database import utcnow
from crudable.exceptions import ForbiddenError, TransactionFailedError, ValidationError
from crudable.meta_engine.schemas.requests import CrudAction, CrudItem

logger = logging.getLogger(__name__)


class UpdateOperation(BaseOperation):
    """
    Handles 'update'.
    """

    def execute(self, table: str, item: CrudItem) -> Dict[str, Any]:
        if item.id is None:
            raise ValidationError("Update requires a row id", field="id")

        if not self.permission_service.can_perform(self.actor, table, "update"):
            raise ForbiddenError(action=CrudAction.update.value, resource=table)

        row = self.engine.guard.load_row(table, item.id)
        if not self.visibility.can_access_row(self.actor, table, row):
            raise ForbiddenError(action=CrudAction.update.value, resource=table, id=item.id)

        values = self.engine.validator.validate_and_normalize(
            self.actor, table, dict(item.data or {}), action="update"
        )
        values["updatedAt"] = utcnow()

        q = self.store.quote
        assignments = ", ".join(f"{q(col)} = :set_{i}" for i, col in enumerate(values))
        params = {f"set_{i}": value for i, value in enumerate(values.values())}
        params["row_id"] = row["id"]
        try:
            self.store.execute(
                f"UPDATE {q(table)} SET {assignments} WHERE {q('id')} = :row_id", params
            )
        except SQLAlchemyError as exc:
            raise TransactionFailedError("update", exc, table=table, id=item.id) from exc

        logger.info("Updated %s %s (%s)", table, item.id, ", ".join(sorted(values)))
        return {"id": row["id"], "table": table, "status": "updated"}
