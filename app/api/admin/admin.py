from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.api.auth.auth import require_admin
from app.core.config import settings
from app.core.database import get_db
from app.core.exceptions import AppealError, AppealNotFound
from app.middleware.rate_limit import limiter
from app.models.user import User
from app.schemas.usage import Appeal, AppealReview, BatchResetResult, UsageResetRequest, UsageResetResult
from app.services.appeal_service import AppealService
from app.services.usage_report_service import UsageReportService
from app.services.usage_reset_service import UsageResetService, get_reset_schedule

router = APIRouter()
logger = logging.getLogger(__name__)

BATCH_RESET_JOBS = {
    'daily': ('reset_daily_counters', "Daily usage counters reset successfully"),
    'weekly': ('reset_weekly_counters', "Weekly usage counters reset successfully"),
    'monthly': ('reset_monthly_counters', "Monthly usage counters reset successfully"),
    'cleanup': ('cleanup_expired_restrictions', "Expired restrictions cleaned up successfully"),
}

@router.get("/usage-overview")
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def get_usage_overview(
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return UsageReportService(db).get_usage_overview()

@router.get("/usage/user/{user_id}")
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def get_user_usage_details(
    user_id: str,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    details = UsageReportService(db).get_user_usage_details(user_id)
    if details is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return details

@router.post("/usage/reset", response_model=UsageResetResult)
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def reset_user_usage(
    reset: UsageResetRequest,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Reset one user's counters for a feature and lift their restrictions"""
    logger.info(f"Admin {admin.id} resetting {reset.period} usage for user {reset.user_id}, feature {reset.feature_type}")
    try:
        result = UsageResetService(db).reset_user_feature_counters(reset.user_id, reset.feature_type, reset.period)
    except Exception as e:
        logger.error(f"Error resetting usage counters: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to reset usage counters"
        )

    return UsageResetResult(
        message=(
            f"Usage counters reset successfully for user {reset.user_id}, "
            f"feature {reset.feature_type}, period {reset.period}"
        ),
        **result
    )

@router.post("/reset/{job}", response_model=BatchResetResult)
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def run_batch_reset(
    job: str,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Manually trigger one of the scheduled reset jobs"""
    if job not in BATCH_RESET_JOBS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown reset job: {job}")

    method_name, message = BATCH_RESET_JOBS[job]
    logger.info(f"Manual {job} reset triggered by admin {admin.id}")
    try:
        affected = getattr(UsageResetService(db), method_name)()
    except Exception as e:
        logger.error(f"Error running {job} reset: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run {job} reset"
        )

    return BatchResetResult(message=message, job=job, affected=affected)

@router.get("/reset/schedule")
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def get_schedule(
    request: Request,
    admin: User = Depends(require_admin)
):
    scheduler = getattr(request.app.state, "usage_scheduler", None)
    return {
        "schedule": get_reset_schedule(),
        "scheduler": scheduler.get_status() if scheduler else {"initialized": False, "active_jobs": 0}
    }

@router.get("/usage/appeals", response_model=List[Appeal])
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def list_appeals(
    request: Request,
    status_filter: Optional[str] = "pending",
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return AppealService(db).list_appeals(status_filter)
    except AppealError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

@router.post("/usage/appeals/{appeal_id}/review", response_model=Appeal)
@limiter.limit(settings.ADMIN_RATE_LIMIT)
async def review_appeal(
    appeal_id: str,
    review: AppealReview,
    request: Request,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    try:
        return AppealService(db).review_appeal(appeal_id, admin.id, review.approve, review.response)
    except AppealNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except AppealError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
