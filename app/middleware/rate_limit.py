from fastapi import Request, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from app.core.config import settings
import logging

logger = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER_SECONDS = 60

def get_rate_limit_key(request: Request) -> str:
    """
    Rate limit key: the authenticated user once the auth dependency has run,
    otherwise the client IP.
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)

# In-memory storage; each worker process keeps its own counters
limiter = Limiter(
    key_func=get_rate_limit_key,
    default_limits=[settings.DEFAULT_RATE_LIMIT] if settings.RATE_LIMIT_ENABLED else [],
    enabled=settings.RATE_LIMIT_ENABLED
)

def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """
    429 for the HTTP rate limits on the usage and admin routes.

    Distinct from the AI usage limits, which are rendered by
    usage_limit_exceeded_handler with per-period details.
    """
    key = get_rate_limit_key(request)
    logger.warning(f"HTTP rate limit ({exc.detail}) hit by {key} on {request.method} {request.url.path}")

    retry_after = getattr(exc, 'retry_after', None) or DEFAULT_RETRY_AFTER_SECONDS
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "error": "Rate limit exceeded",
            "message": "Too many requests. Please try again later.",
            "retry_after": retry_after
        },
        headers={"Retry-After": str(retry_after)}
    )

def create_rate_limit_middleware():
    """SlowAPIMiddleware applies the default limit to every route; None when disabled"""
    if not settings.RATE_LIMIT_ENABLED:
        logger.info("HTTP rate limiting is disabled in settings")
        return None

    logger.info(f"HTTP rate limiting enabled (default {settings.DEFAULT_RATE_LIMIT}, admin {settings.ADMIN_RATE_LIMIT})")
    return SlowAPIMiddleware
