"""Global error handlers rendering the standard failure envelope."""
import logging

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from authgate.core.constants import ERROR_STATUS, ErrorKind
from authgate.schemas.common import ErrorDetail, ErrorResponse
from authgate.utils import helpers
from authgate.utils.errors import ApiError

logger = logging.getLogger(__name__)

_KIND_BY_STATUS = {status: kind for kind, status in ERROR_STATUS.items()}


def error_body(code: str, message: str, details=None) -> dict:
    body = ErrorResponse(
        error=ErrorDetail(
            code=code,
            message=message,
            timestamp=helpers.utcnow().isoformat() + "Z",
            details=details,
        )
    )
    content = body.model_dump()
    if details is None:
        content["error"].pop("details")
    return content


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.code, exc.message, exc.details)),
        headers=exc.headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    kind = _KIND_BY_STATUS.get(exc.status_code, ErrorKind.INTERNAL_ERROR)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(kind.value, str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorKind.VALIDATION_ERROR.value, "Invalid request data", details),
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorKind.INTERNAL_ERROR.value, "Internal server error"),
    )
