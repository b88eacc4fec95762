"""Starlette/FastAPI integration.

Wraps a rule into ``BaseHTTPMiddleware`` so an ASGI app can use it like
any other middleware. The request is the context; ``call_next(request)``
is the continuation.

Example:
    >>> rule = (
    ...     Limiter()
    ...     .token_bucket(bucket_size=10, tokens_per_interval=1, interval_ms=1000)
    ...     .limit_for(client_host)
    ...     .use_storage(MemoryStore())
    ...     .with_key_prefix("http")
    ...     .on_throttled(too_many_requests)
    ... )
    >>> app.add_middleware(RateLimitMiddleware, rule=rule)
"""

import math
from typing import Optional, Union

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ratewarden.builder import Limiter
from ratewarden.middleware.dispatcher import limit
from ratewarden.models import LimitResult
from ratewarden.rule import Rule
from ratewarden.storage.base import StorageEngine


def client_host(request: Request) -> Optional[str]:
    """Key function using the client address.

    The first ``X-Forwarded-For`` hop wins over the socket peer, so this
    should only be used behind a proxy that sets the header.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _rate_limit_headers(result: LimitResult) -> dict[str, str]:
    reset_seconds = math.ceil(result.reset / 1000)
    return {
        "Retry-After": str(reset_seconds),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(reset_seconds),
    }


def _rate_limited_response(
    result: Optional[LimitResult] = None,
) -> JSONResponse:
    """429 response; rate limit details are added when a result is known."""
    content = {
        "error": "rate_limit_exceeded",
        "message": "Rate limit exceeded. Please try again later.",
    }
    if result is None:
        return JSONResponse(status_code=429, content=content)
    content["retry_after_ms"] = result.reset
    return JSONResponse(status_code=429, content=content, headers=_rate_limit_headers(result))


def too_many_requests(request: Request, result: LimitResult, storage: StorageEngine) -> Response:
    """Throttled callback answering with 429 and rate limit headers."""
    return _rate_limited_response(result)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware enforcing one rate limiting rule on every request.

    Responses returned by the throttled callback are sent as-is. Requests
    dropped by the penalty box, or throttled by a callback that returns
    something other than a response, get a bare 429.
    """

    def __init__(self, app, rule: Union[Rule, Limiter]):
        super().__init__(app)
        self._middleware = limit(rule)

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        response = await self._middleware(request, lambda: call_next(request))
        if isinstance(response, Response):
            return response
        return _rate_limited_response()
