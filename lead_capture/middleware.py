import uuid
from typing import Callable

from fastapi import FastAPI, Request
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse, Response

from lead_capture.config import Settings
from lead_capture.log import request_id_ctx_var
from lead_capture.models import ErrorResponse
from lead_capture.rate_limit import UNKNOWN_CLIENT, RateLimiter, seconds_until

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 128


def client_ip(request: Request) -> str:
    """Client key for throttling: the raw X-Forwarded-For header or ``"unknown"``.

    The header is client controlled and every request without it shares one
    bucket.
    """

    forwarded = request.headers.get("x-forwarded-for", "").strip()
    return forwarded or UNKNOWN_CLIENT


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's request id (or mint one), expose it to logging and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:  # type: ignore[override]
        request_id = request.headers.get(REQUEST_ID_HEADER, "").strip()
        if not request_id or len(request_id) > MAX_REQUEST_ID_LENGTH:
            request_id = uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_ctx_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Render slowapi rejections in the same shape as the submission throttle.

    slowapi leaves the exceeded item and its storage key on
    ``request.state.view_rate_limit``; the retry hint is the time left in that
    window.
    """

    retry_after = exc.limit.limit.get_expiry()
    exceeded = getattr(request.state, "view_rate_limit", None)
    if exceeded:
        item, key = exceeded
        reset_time, _remaining = request.app.state.limiter.limiter.get_window_stats(item, *key)
        retry_after = seconds_until(reset_time)
    body = ErrorResponse(error="Too many requests", retry_after=retry_after)
    return JSONResponse(
        status_code=429,
        content=body.model_dump(by_alias=True, exclude_none=True),
        headers={"Retry-After": str(retry_after)},
    )


def configure_middlewares(app: FastAPI, settings: Settings) -> Limiter:
    """Install the throttles, request ids and CORS; returns the slowapi limiter for route decorators."""

    limiter = Limiter(key_func=client_ip)
    app.state.limiter = limiter
    app.state.submission_limiter = RateLimiter(
        settings.submission_rate_limit,
        settings.submission_rate_window_seconds,
    )
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(RequestIdMiddleware)

    origins = settings.allowed_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["Content-Type", REQUEST_ID_HEADER],
            expose_headers=[REQUEST_ID_HEADER, "Retry-After"],
        )

    return limiter
