"""
Booking outcome taxonomy.

Helpers deep in the booking flow raise a BookingError subclass. The public
lifecycle operations catch them, roll the session back and hand the caller
an Outcome instead of an exception.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENERIC_FAILURE_MESSAGE = "Something went wrong, please try again."


class OutcomeCode(str, Enum):
    OK = "OK"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    OWNERSHIP = "OWNERSHIP"
    STATE_ERROR = "STATE_ERROR"
    COLLABORATOR_FAILURE = "COLLABORATOR_FAILURE"


class BookingError(Exception):
    """Base class for rejected booking and loyalty operations."""

    code: OutcomeCode = OutcomeCode.VALIDATION_ERROR

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(BookingError):
    code = OutcomeCode.VALIDATION_ERROR


class ConflictError(BookingError):
    code = OutcomeCode.CONFLICT


class NotFoundError(BookingError):
    code = OutcomeCode.NOT_FOUND


class OwnershipError(BookingError):
    code = OutcomeCode.OWNERSHIP


class StateError(BookingError):
    code = OutcomeCode.STATE_ERROR


class CollaboratorError(BookingError):
    code = OutcomeCode.COLLABORATOR_FAILURE

    def __init__(self, message: str = GENERIC_FAILURE_MESSAGE, details: Optional[dict] = None):
        super().__init__(message, details)


@dataclass
class Outcome(Generic[T]):
    """Result of a lifecycle operation: either data or a coded failure."""

    ok: bool
    code: OutcomeCode
    message: str = ""
    data: Optional[T] = None
    details: Optional[dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, message: str = "") -> "Outcome[T]":
        return cls(ok=True, code=OutcomeCode.OK, message=message, data=data)

    @classmethod
    def failure(cls, code: OutcomeCode, message: str, details: Optional[dict] = None) -> "Outcome[T]":
        return cls(ok=False, code=code, message=message, details=details)

    @classmethod
    def from_error(cls, exc: BookingError) -> "Outcome[T]":
        return cls.failure(exc.code, exc.message, exc.details)


async def run_operation(
    session: AsyncSession,
    operation: str,
    work: Callable[[], Awaitable[T]],
    message: str = "",
) -> Outcome[T]:
    """
    Run one unit of work and commit it, or roll all of it back.

    BookingErrors become coded failures; storage errors become
    COLLABORATOR_FAILURE with a generic message.
    """
    try:
        data = await work()
        await session.commit()
    except BookingError as e:
        await session.rollback()
        logger.warning(f"{operation} rejected: {e.code.value} {e.message}")
        return Outcome.from_error(e)
    except SQLAlchemyError:
        await session.rollback()
        logger.exception(f"{operation} failed")
        return Outcome.failure(OutcomeCode.COLLABORATOR_FAILURE, GENERIC_FAILURE_MESSAGE)
    return Outcome.success(data, message)
