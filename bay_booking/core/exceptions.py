import logging

from fastapi import Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.responses import JSONResponse

from bay_booking.schemas.common import APIResponse, APIError
from bay_booking.core.error_codes import ErrorCode, http_status_for

from bay_booking.core.domain_exceptions import DomainException

logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=APIResponse(
            success=False,
            error=APIError(code=code, message=message),
        ).model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException):
    return _error_response(exc.status_code, ErrorCode.VALIDATION_ERROR, str(exc.detail))


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request.")
    if location:
        message = f"{location}: {message}"
    return _error_response(422, ErrorCode.VALIDATION_ERROR, message)


async def domain_exception_handler(request: Request, exc: DomainException):
    status_code = http_status_for(exc.code)
    if status_code >= 409:
        logger.info(
            "Domain conflict",
            extra={"code": exc.code, "path": request.url.path},
        )
    return _error_response(status_code, exc.code, exc.message)
