from crudable.exceptions.handlers import (
    ConfigurationError,
    CrudableError,
    ForbiddenError,
    NotFoundError,
    TransactionFailedError,
    ValidationError,
)

__all__ = [
    "CrudableError",
    "NotFoundError",
    "ForbiddenError",
    "ValidationError",
    "TransactionFailedError",
    "ConfigurationError",
]
