from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict

from crudable.meta_engine.schemas.requests import CrudItem

if TYPE_CHECKING:
    from ..services.engine import CrudEngine


class BaseOperation(ABC):
    """
    Abstract base class for table operations (Add, Get, Update, Delete)
    """

    def __init__(self, engine: "CrudEngine"):
        self.engine = engine
        self.store = engine.store
        self.catalog = engine.catalog
        self.permission_service = engine.permission_service
        self.visibility = engine.visibility
        self.actor = engine.actor

    @abstractmethod
    def execute(self, table: str, item: CrudItem) -> Dict[str, Any]:
        pass
