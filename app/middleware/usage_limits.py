"""
FastAPI wiring for the AI usage gate.

``check_usage_restrictions(feature_type)`` returns a dependency to attach to any
route that performs a rate-limited AI action::

    @router.post("/cover-letter")
    async def generate_cover_letter(
        payload: CoverLetterRequest,
        _: GateDecision = Depends(check_usage_restrictions("cover_letter")),
    ):
        ...
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.auth.auth import get_optional_user
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import UnknownFeature, UsageLimitExceeded
from app.core.usage_limits import normalize_feature_type
from app.models.user import User
from app.services.usage_gate import GateDecision, UsageGate
from app.services.usage_monitor import UsageMonitor

logger = logging.getLogger(__name__)


def check_usage_restrictions(feature_type: str) -> Callable:
    """
    Build the usage gate dependency for one feature.

    Raises UnknownFeature immediately when the feature is not configured, so a
    misspelled feature fails when the route is declared rather than per request.
    """
    feature = normalize_feature_type(feature_type)

    async def usage_gate_dependency(
        request: Request,
        response: Response,
        current_user: Optional[User] = Depends(get_optional_user),
        db: Session = Depends(get_db)
    ) -> GateDecision:
        if not settings.USAGE_MONITORING_ENABLED or current_user is None:
            return GateDecision()

        content = await request.body()
        decision = UsageGate(UsageMonitor(db)).evaluate(current_user.id, feature, content)

        for header, value in decision.headers.items():
            response.headers[header] = value
        return decision

    usage_gate_dependency.__name__ = f"check_usage_restrictions_{feature}"
    return usage_gate_dependency


def usage_limit_exceeded_handler(request: Request, exc: UsageLimitExceeded) -> JSONResponse:
    """Render a governance rejection as a 429 with the structured details"""
    user_id = getattr(request.state, "user_id", None)
    logger.warning(
        f"AI usage blocked for user {user_id}, "
        f"Feature: {exc.details.get('feature')}, "
        f"Path: {request.url.path}, "
        f"Reason: {exc.error}"
    )

    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(exc.retry_after)

    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=exc.to_dict(),
        headers=headers
    )


def unknown_feature_handler(request: Request, exc: UnknownFeature) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Unknown feature", "message": str(exc)}
    )
