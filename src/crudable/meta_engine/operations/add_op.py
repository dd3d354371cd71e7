import logging
from typing import Any, Dict

from sqlalchemy.exc import SQLAlchemyError

from .base import BaseOperation
from crudable.database import utcnow
from crudable.exceptions import ForbiddenError, TransactionFailedError
from crudable.meta_engine.permission.visibility import GrantedState
from crudable.meta_engine.schemas.requests import CrudAction, CrudItem

logger = logging.getLogger(__name__)


class AddOperation(BaseOperation):
    """
    Handles 'add'.
    """

    def execute(self, table: str, item: CrudItem) -> Dict[str, Any]:
        # 0. Permission Check
        if not self.permission_service.can_perform(self.actor, table, "create"):
            raise ForbiddenError(action=CrudAction.add.value, resource=table)

        # 1. Validate & Normalize
        values = self.engine.validator.validate_and_normalize(
            self.actor, table, dict(item.data or {}), action="create"
        )

        # 2. System fields
        now = utcnow()
        if not values.get("granted"):
            values["granted"] = GrantedState.draft.value
        values["ownerId"] = self.actor.id if self.actor is not None else None
        values["createdAt"] = now
        values["updatedAt"] = now

        # 3. Insert, placing ordered children after their siblings
        try:
            with self.store.transaction() as tx:
                self.engine.reorder_service.assign_positions(tx, table, values)
                new_id = tx.insert(table, values)
        except SQLAlchemyError as exc:
            raise TransactionFailedError("create", exc, table=table) from exc

        logger.info("Created %s %s", table, new_id)
        return {"id": new_id, "table": table, "status": "created"}
