"""Shared rate limiting utilities using SlowAPI.

Requests are counted per caller: the token subject when a bearer token is
present, the client address otherwise. One user booking from several devices
shares a single budget.
"""
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from .config import get_settings

settings = get_settings()

# Per-route budgets for the booking engine's heavier endpoints.
SLOT_QUERY_LIMIT = "60/minute"
BOOKING_WRITE_LIMIT = "20/minute"


def request_caller(request: Request) -> str:
    """Identify who is calling; the signature is checked later by the auth dependencies."""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        try:
            subject = jwt.get_unverified_claims(token).get("sub")
        except JWTError:
            subject = None
        if subject:
            return f"user:{subject}"
    return f"ip:{get_remote_address(request)}"


limiter = Limiter(
    key_func=request_caller,
    default_limits=[settings.default_rate_limit],
    enabled=settings.rate_limiting_enabled,
)


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"detail": f"Rate limit exceeded for {request_caller(request)}: {exc.detail}"},
    )


def apply_rate_limiter(app: FastAPI) -> None:
    """Attach the limiter middleware and exception handler to an app."""

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
