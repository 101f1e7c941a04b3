"""
Run locally: uvicorn lead_capture.main:app --reload
Production: gunicorn -k uvicorn.workers.UvicornWorker -w 2 -b 0.0.0.0:8000 lead_capture.main:app
Example:
curl -X POST http://localhost:8000/api/submit-partial \
  -H "Content-Type: application/json" \
  -d '{"address":"123 Main St, Springfield, IL","phone":"(555) 123-4567","consent":true}'
"""

import logging
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lead_capture.config import get_settings
from lead_capture.crm import GoHighLevelClient
from lead_capture.errors import (
    InvalidFormat,
    LeadCaptureError,
    MalformedPayload,
    TooManyRequests,
    VerificationError,
)
from lead_capture.log import configure_logging
from lead_capture.middleware import client_ip, configure_middlewares
from lead_capture.models import ClientConfig, ErrorResponse, PhoneValidationRequest, validate_payload
from lead_capture.phone_verification import NumverifyClient
from lead_capture.rate_limit import RateLimiter
from lead_capture.services import LeadSubmissionService

settings = get_settings()
configure_logging(settings.log_level)

app = FastAPI(
    title="Property Lead Capture API",
    description="Capture property seller leads, verify phone numbers and forward leads to the CRM.",
    version="1.0.0",
    openapi_tags=[
        {"name": "health", "description": "Liveness and public client settings."},
        {"name": "lead", "description": "Partial and complete lead submissions."},
        {"name": "phone", "description": "Phone number verification proxy."},
    ],
)

limiter = configure_middlewares(app, settings)
logger = logging.getLogger(__name__)


def get_crm_client() -> GoHighLevelClient:
    return GoHighLevelClient(get_settings())


def get_submission_service(crm: GoHighLevelClient = Depends(get_crm_client)) -> LeadSubmissionService:
    return LeadSubmissionService(crm)


def get_phone_verifier() -> NumverifyClient:
    return NumverifyClient(get_settings())


def get_submission_limiter(request: Request) -> RateLimiter:
    return request.app.state.submission_limiter


@app.exception_handler(LeadCaptureError)
async def lead_capture_exception_handler(request: Request, exc: LeadCaptureError) -> JSONResponse:
    """Render domain errors; 500-class diagnostics only leave the server outside production."""

    body = ErrorResponse(error=exc.message)
    headers = None
    if isinstance(exc, TooManyRequests):
        body.retry_after = exc.retry_after
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code < 500:
        body.details = exc.details
    elif not settings.is_production:
        body.details = exc.details if exc.details is not None else repr(exc)

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "Request failed",
        extra={"status_code": exc.status_code, "error_type": type(exc).__name__, "detail": exc.message},
    )
    content = body.model_dump(by_alias=True, exclude_none=True)
    if isinstance(exc, VerificationError):
        content["validationData"] = None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing errors (404, 405) in the same ``{error}`` envelope."""

    error = exc.detail if isinstance(exc.detail, str) else "Request failed"
    logger.warning("HTTP error", extra={"status_code": exc.status_code, "path": request.url.path})
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=error).model_dump(exclude_none=True),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content=ErrorResponse(error="Server error").model_dump(exclude_none=True))


async def _accept_submission(request: Request, submission_limiter: RateLimiter) -> Any:
    """Throttle, then decode the JSON body. Nothing else runs for rejected requests."""

    key = client_ip(request)
    decision = submission_limiter.check(key)
    if not decision.allowed:
        logger.warning("Rate limit exceeded", extra={"client_ip": key, "path": request.url.path})
        raise TooManyRequests(decision.retry_after)
    try:
        return await request.json()
    except ValueError as exc:
        logger.warning("Error parsing request body", extra={"path": request.url.path})
        raise MalformedPayload() from exc


@app.get("/health", tags=["health"], response_model=dict)
async def health_check() -> dict[str, str]:
    """Return service health information."""

    return {"status": "success", "message": "OK"}


@app.get("/api/client-config", tags=["health"])
async def client_config() -> dict[str, Any]:
    """Expose the public keys the browser form needs."""

    if not settings.google_maps_api_key:
        logger.warning("Google Maps API key is not configured")
    config = ClientConfig(
        google_maps_script_url=settings.google_maps_script_url,
        conversion_target=settings.conversion_target,
        environment=settings.environment,
    )
    return config.model_dump(by_alias=True)


@app.post("/api/submit-partial", tags=["lead"])
async def submit_partial(
    request: Request,
    service: LeadSubmissionService = Depends(get_submission_service),
    submission_limiter: RateLimiter = Depends(get_submission_limiter),
) -> dict[str, Any]:
    """Save the address and phone captured on the first form step."""

    payload = await _accept_submission(request, submission_limiter)
    result = await service.submit_partial(payload)
    return result.model_dump(by_alias=True)


@app.post("/api/submit-complete", tags=["lead"])
async def submit_complete(
    request: Request,
    service: LeadSubmissionService = Depends(get_submission_service),
    submission_limiter: RateLimiter = Depends(get_submission_limiter),
) -> dict[str, Any]:
    """Save full contact and property details against an existing lead id."""

    payload = await _accept_submission(request, submission_limiter)
    result = await service.submit_complete(payload)
    return result.model_dump(by_alias=True)


@app.post("/api/validate-phone", tags=["phone"])
@limiter.limit(f"{settings.phone_rate_limit_per_minute}/minute")
async def validate_phone(
    request: Request,
    verifier: NumverifyClient = Depends(get_phone_verifier),
) -> dict[str, Any]:
    """Verify an unformatted phone number and decide whether it is an acceptable lead."""

    try:
        data = await request.json()
    except ValueError as exc:
        raise MalformedPayload() from exc
    result = validate_payload(PhoneValidationRequest, data)
    if not result.ok:
        raise InvalidFormat()
    phone_number = result.value.phone_number
    if not phone_number:
        raise VerificationError("Phone number is required")

    info = await verifier.verify(phone_number)
    logger.info(
        "Phone number verified",
        extra={"line_type": info.line_type, "is_valid_lead": info.is_valid_lead},
    )
    return info.to_response()
