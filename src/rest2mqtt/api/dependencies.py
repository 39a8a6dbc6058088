# rest2mqtt/api/dependencies.py
"""
FastAPI dependencies shared by the routers.

Provides:
- ``client_address``: the caller identity used for rate limiting and logs.
- ``enforce_rate_limit``: the rate-limit interceptor of the ``/v1`` group.
- ``V1_INTERCEPTORS``: the ordered interceptor chain applied to ``/v1``.
"""
from __future__ import annotations

import logging

from fastapi import Depends, Request, Response

from rest2mqtt.core.exceptions import RateLimited
from rest2mqtt.core.ratelimit import RateLimitDecision, RateLimiter

logger = logging.getLogger(__name__)


def client_address(request: Request) -> str:
    """``X-Real-Ip``, then ``X-Forwarded-For``, then the peer address."""
    for header in ("X-Real-Ip", "X-Forwarded-For"):
        value = request.headers.get(header)
        if value:
            return value
    return request.client.host if request.client else ""


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(decision.reset_at),
    }


def enforce_rate_limit(request: Request, response: Response) -> None:
    """Count the request against its key; raise ``RateLimited`` over quota."""
    limiter: RateLimiter = request.app.state.rate_limiter
    key = client_address(request)
    decision = limiter.allow(key)

    if limiter.enabled:
        response.headers.update(rate_limit_headers(decision))

    if not decision.allowed:
        logger.info(
            "Rate limit exceeded",
            extra={"from": key, "path": request.url.path, "limit": decision.limit},
        )
        raise RateLimited(decision)


# Run in order; any of them may end the request by raising a BridgeError.
V1_INTERCEPTORS = [Depends(enforce_rate_limit)]
