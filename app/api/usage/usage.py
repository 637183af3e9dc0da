from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.auth.auth import get_current_user
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import AppealError, AppealNotFound
from app.middleware.rate_limit import limiter
from app.models.user import User
from app.schemas.usage import Appeal, AppealCreate, CurrentUsage, UsageStats
from app.services.appeal_service import AppealService
from app.services.usage_monitor import UsageMonitor

router = APIRouter()

@router.get("/stats", response_model=UsageStats)
@limiter.limit(settings.USAGE_RATE_LIMIT)
async def get_usage_stats(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Today's AI usage, active restrictions and limits for the current user"""
    return UsageMonitor(db).get_user_usage_stats(current_user.id)

@router.get("/current/{feature_type}", response_model=CurrentUsage)
@limiter.limit(settings.USAGE_RATE_LIMIT)
async def get_current_feature_usage(
    feature_type: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return UsageMonitor(db).get_current_usage(current_user.id, feature_type)

@router.post("/appeals", response_model=Appeal, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.USAGE_RATE_LIMIT)
async def submit_appeal(
    appeal: AppealCreate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return AppealService(db).submit_appeal(current_user.id, appeal.restriction_id, appeal.reason)
    except AppealNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AppealError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
