"""
Domain error translation - every ReferralError becomes a JSON error body
with a stable kind and a retryable flag.
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse

from refertrack.errors import ReferralError
from refertrack.schemas.api_responses import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "validation": 400,
    "authorization": 403,
    "not_found": 404,
    "conflict": 409,
    "stale_write": 409,
    "lock_timeout": 409,
    "dependency": 502,
}


def status_for(error: ReferralError) -> int:
    return STATUS_BY_KIND.get(error.kind, 500)


async def referral_error_handler(request: Request, exc: ReferralError) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "%s %s failed: %s (%s)",
        request.method, request.url.path, exc.kind, str(exc),
        extra={"error_code": exc.kind},
    )
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=exc.kind, detail=str(exc), retryable=exc.retryable).model_dump(),
    )
