from datetime import datetime
from typing import Callable, List, Optional
import logging

from sqlalchemy.orm import Session

from app.core.exceptions import AppealError, AppealNotFound
from app.models.usage_monitoring import UsageAppeal, UserRestriction
from app.utils.time_utils import ensure_utc, utcnow
from app.utils.usage_logger import usage_logger

logger = logging.getLogger(__name__)

APPEAL_STATUSES = ('pending', 'approved', 'rejected')


class AppealService:
    """Appeals against usage restrictions"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utcnow

    def submit_appeal(self, user_id: str, restriction_id: str, reason: str) -> UsageAppeal:
        restriction = self.db.query(UserRestriction).filter(
            UserRestriction.id == restriction_id,
            UserRestriction.user_id == user_id
        ).first()
        if not restriction:
            raise AppealNotFound("Restriction not found")

        now = ensure_utc(self.clock())
        if not restriction.is_active or (restriction.end_time and ensure_utc(restriction.end_time) <= now):
            raise AppealError("Restriction is no longer active")
        if not restriction.can_appeal:
            raise AppealError("This restriction cannot be appealed")
        if restriction.appeal_submitted:
            raise AppealError("An appeal has already been submitted for this restriction")

        appeal = UsageAppeal(
            user_id=user_id,
            restriction_id=restriction.id,
            appeal_reason=reason,
            status='pending'
        )
        restriction.appeal_submitted = True
        self.db.add(appeal)
        self.db.commit()
        self.db.refresh(appeal)

        logger.info(f"User {user_id} appealed restriction {restriction.id}")
        usage_logger.log_appeal("appeal_submitted", user_id, appeal.id, restriction.id)
        return appeal

    def list_appeals(self, status: Optional[str] = None) -> List[UsageAppeal]:
        query = self.db.query(UsageAppeal)
        if status:
            if status not in APPEAL_STATUSES:
                raise AppealError(f"Unknown appeal status: {status}")
            query = query.filter(UsageAppeal.status == status)
        return query.order_by(UsageAppeal.created_at.desc()).all()

    def review_appeal(self, appeal_id: str, reviewer_id: str, approve: bool,
                      response: Optional[str] = None) -> UsageAppeal:
        """Approve (lifting the restriction) or reject a pending appeal"""
        appeal = self.db.query(UsageAppeal).filter(UsageAppeal.id == appeal_id).first()
        if not appeal:
            raise AppealNotFound("Appeal not found")
        if appeal.status != 'pending':
            raise AppealError(f"Appeal has already been {appeal.status}")

        now = ensure_utc(self.clock())
        appeal.status = 'approved' if approve else 'rejected'
        appeal.admin_response = response
        appeal.reviewed_by = reviewer_id
        appeal.reviewed_at = now

        if approve:
            restriction = self.db.query(UserRestriction).filter(
                UserRestriction.id == appeal.restriction_id
            ).first()
            if restriction and restriction.is_active:
                restriction.is_active = False
                restriction.updated_at = now

        self.db.commit()
        self.db.refresh(appeal)

        logger.info(f"Appeal {appeal.id} {appeal.status} by {reviewer_id}")
        usage_logger.log_appeal(f"appeal_{appeal.status}", appeal.user_id, appeal.id,
                                appeal.restriction_id, reviewer_id)
        if approve:
            usage_logger.log_restrictions_lifted(appeal.user_id, None, 1, trigger="appeal_approved")
        return appeal
