from __future__ import annotations

from typing import Any, Dict, Optional


class CrudableError(Exception):
    """
    Base exception of the engine.

    Every error carries:
    - attributes: message/code/status_code/details/user_message
    - method: to_dict()

    ``status_code`` is the HTTP status a routing layer should answer with.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "CRUDABLE_ERROR",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details: Dict[str, Any] = details or {}
        self.user_message = user_message or message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "details": self.details,
        }

    def __str__(self) -> str:  # pragma: no cover
        return self.message


class NotFoundError(CrudableError):
    def __init__(self, resource: str, identifier: Any = None, **kwargs: Any):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        details: Dict[str, Any] = {"resource": resource, "identifier": identifier}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404,
            details=details,
            user_message=message,
        )


class ForbiddenError(CrudableError):
    def __init__(self, action: str, resource: Optional[str] = None, **kwargs: Any):
        message = f"Permission denied for action: {action}"
        if resource:
            message += f" on resource: {resource}"

        details: Dict[str, Any] = {"action": action, "resource": resource}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="FORBIDDEN",
            status_code=403,
            details=details,
            user_message="You don't have permission to perform this action",
        )


class ValidationError(CrudableError):
    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"field": field} if field else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="VALIDATION_FAILED",
            status_code=400,
            details=details,
            user_message=f"Validation failed: {message}",
        )


class TransactionFailedError(CrudableError):
    def __init__(self, operation: str, cause: Optional[BaseException] = None, **kwargs: Any):
        message = f"Transaction failed during {operation}"
        if cause is not None:
            message += f": {cause}"
        details: Dict[str, Any] = {"operation": operation}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="TRANSACTION_FAILED",
            status_code=500,
            details=details,
            user_message="The operation could not be completed",
        )
        self.cause = cause


class ConfigurationError(CrudableError):
    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any):
        details: Dict[str, Any] = {"config_key": config_key} if config_key else {}
        details.update(kwargs)
        super().__init__(
            message=message,
            code="CONFIGURATION_ERROR",
            status_code=500,
            details=details,
            user_message="System configuration error",
        )
