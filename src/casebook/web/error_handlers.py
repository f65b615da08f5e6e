import structlog
from fastapi import Request
from fastapi.responses import JSONResponse, Response

from casebook.errors import (
    AccessDeniedError,
    AllocationExhaustedError,
    AuthenticationError,
    NotFoundError,
    StorageFaultError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


def create_json_error_response(status_code: int, message: str, error_type: str | None = None) -> JSONResponse:
    """Create JSON error response with optional type for machine parsing."""
    content = {"message": message}
    if error_type:
        content["type"] = error_type
    return JSONResponse(status_code=status_code, content=content)


async def user_error_handler(_: Request, exc: Exception) -> Response:
    """Handle all UserError subclasses with appropriate status codes."""
    if isinstance(exc, AuthenticationError):
        status_code = 401
        error_type = "authentication_error"
    elif isinstance(exc, AccessDeniedError):
        status_code = 403
        error_type = "access_denied"
    elif isinstance(exc, NotFoundError):
        status_code = 404
        error_type = "not_found"
    elif isinstance(exc, ValidationError):
        status_code = 400
        error_type = "validation_error"
    else:
        # Default for any other UserError subclass
        status_code = 400
        error_type = "bad_request"

    return create_json_error_response(status_code=status_code, message=str(exc), error_type=error_type)


async def infrastructure_error_handler(request: Request, exc: Exception) -> Response:
    """Handle InfrastructureError subclasses without exposing their details."""
    if isinstance(exc, AllocationExhaustedError):
        logger.warning("allocation_exhausted", path=request.url.path, error=str(exc))
        return create_json_error_response(
            status_code=503, message="The service is busy, please retry.", error_type="allocation_exhausted"
        )

    if isinstance(exc, StorageFaultError):
        logger.error("storage_fault_response", path=request.url.path, error=str(exc))
        return create_json_error_response(status_code=500, message="A storage error occurred.", error_type="storage_fault")

    return await general_exception_handler(request, exc)


async def general_exception_handler(request: Request, exc: Exception) -> Response:
    """Handle unexpected errors (500)."""
    logger.exception("unexpected_error", path=request.url.path, error=str(exc))
    return create_json_error_response(
        status_code=500, message="An unexpected error occurred.", error_type="internal_server_error"
    )
