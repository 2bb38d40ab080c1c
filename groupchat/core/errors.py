"""
Service error taxonomy and the uniform result type.

Services raise ``ServiceError`` subclasses internally; the
``service_operation`` decorator is the service boundary and turns every
outcome into a ``ServiceResult``. The REST layer maps ``ErrorKind`` to an HTTP
status with ``STATUS_BY_KIND``.
"""
import enum
import functools
import logging
from dataclasses import dataclass, field
from typing import Any, Generic, List, Optional, TypeVar

from fastapi import status

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    UNEXPECTED = "unexpected"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.UNEXPECTED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(kind: ErrorKind) -> int:
    return STATUS_BY_KIND[kind]


class ServiceError(Exception):
    """Expected domain failure with a message safe to show to the caller"""

    kind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, reason: Optional[str] = None, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.errors = errors or [message]


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class ForbiddenError(ServiceError):
    kind = ErrorKind.FORBIDDEN


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class ValidationError(ServiceError):
    kind = ErrorKind.VALIDATION


class UnauthorizedError(ServiceError):
    kind = ErrorKind.UNAUTHORIZED


@dataclass
class ServiceResult(Generic[T]):
    is_success: bool
    message: str = ""
    data: Optional[T] = None
    errors: List[str] = field(default_factory=list)
    kind: Optional[ErrorKind] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, data: Any = None, message: str = "") -> "ServiceResult":
        return cls(is_success=True, message=message, data=data)

    @classmethod
    def failure(cls, error: ServiceError) -> "ServiceResult":
        return cls(
            is_success=False,
            message=error.message,
            errors=list(error.errors),
            kind=error.kind,
            reason=error.reason,
        )

    @classmethod
    def unexpected(cls, message: str) -> "ServiceResult":
        return cls(is_success=False, message=message, errors=[message], kind=ErrorKind.UNEXPECTED)


def service_operation(failure_message: str):
    """
    Wrap an async service method so it always returns a ``ServiceResult``.

    The method returns ``(data, message)`` on success. A ``ServiceError``
    becomes a failed result carrying its kind; anything else is logged, the
    session rolled back, and reported with ``failure_message`` only.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs) -> ServiceResult:
            try:
                data, message = await func(self, *args, **kwargs)
                return ServiceResult.success(data, message)
            except ServiceError as e:
                await _rollback(self)
                return ServiceResult.failure(e)
            except Exception:
                logger.exception(f"Unexpected error in {type(self).__name__}.{func.__name__}")
                await _rollback(self)
                return ServiceResult.unexpected(failure_message)

        return wrapper

    return decorator


async def _rollback(service) -> None:
    db = getattr(service, "db", None)
    if db is None:
        return
    try:
        await db.rollback()
    except Exception:
        logger.exception("Rollback failed")
