"""
Translation of business failures into HTTP responses.

Services return Failure values; routes call unwrap() which raises
FailureError, and the handler registered in main renders it:

    {"error": {"code": ..., "category": ..., "message": ..., "details": {...}}}
"""

from typing import TypeVar

from fastapi import Request, status
from fastapi.responses import JSONResponse

from boxoffice.core.logging import get_logger
from boxoffice.domain.results import ErrorCategory, Failure, Result

logger = get_logger(__name__)

T = TypeVar("T")

STATUS_BY_CATEGORY = {
    ErrorCategory.CAPACITY: status.HTTP_409_CONFLICT,
    ErrorCategory.STATE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorCategory.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCategory.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCategory.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorCategory.EXTERNAL: status.HTTP_502_BAD_GATEWAY,
}


class FailureError(Exception):
    def __init__(self, failure: Failure):
        super().__init__(str(failure))
        self.failure = failure

    @property
    def status_code(self) -> int:
        return STATUS_BY_CATEGORY[self.failure.category]


def unwrap(result: Result[T]) -> T:
    if not result.ok:
        raise FailureError(result)
    return result.value


def failure_body(failure: Failure) -> dict:
    return {
        "error": {
            "code": failure.code.value,
            "category": failure.category.value,
            "message": failure.message,
            "details": failure.details,
        }
    }


async def failure_handler(request: Request, exc: FailureError) -> JSONResponse:
    logger.info(
        "request_rejected",
        code=exc.failure.code.value,
        category=exc.failure.category.value,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=failure_body(exc.failure))
