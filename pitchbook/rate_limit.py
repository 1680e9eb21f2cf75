"""
Rate limiting configuration using slowapi.

Two tiers:
  • booking – 10/min (create / reschedule / cancel – stops slot hoarding)
  • default – 60/min (everything else)

The limiter keys on client IP by default.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from pitchbook.models import Error

limiter = Limiter(key_func=get_remote_address, default_limits=["60/minute"])

# Named rate strings for use in @limiter.limit() decorators
BOOKING = "10/minute"    # booking writes
DEFAULT = "60/minute"    # general API


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={
            "detail": Error(
                error="rate_limited",
                message=f"Rate limit exceeded: {exc.detail}",
            ).model_dump()
        },
    )
