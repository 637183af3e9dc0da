from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session

from app.core.usage_limits import USAGE_LIMITS
from app.models.user import User
from app.models.usage_monitoring import UsageRecord, UsageViolation, UserRestriction
from app.utils.time_utils import ensure_utc, usage_date_key, utcnow

logger = logging.getLogger(__name__)


class UsageReportService:
    """Read-only usage views for the admin dashboards"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utcnow

    def get_usage_overview(self) -> dict:
        """Every user with today's per-feature counters"""
        today = usage_date_key(ensure_utc(self.clock()))
        rows = self.db.query(User, UsageRecord).outerjoin(
            UsageRecord,
            and_(UsageRecord.user_id == User.id, UsageRecord.usage_date == today)
        ).order_by(User.created_at).all()

        users: Dict[str, dict] = {}
        for user, record in rows:
            entry = users.setdefault(user.id, {
                'user_id': user.id,
                'email': user.email,
                'name': user.name,
                'subscription_status': user.subscription_status,
                'usage': {}
            })
            if record is not None:
                entry['usage'][record.feature_type] = {
                    'daily': record.daily_count or 0,
                    'weekly': record.weekly_count or 0,
                    'monthly': record.monthly_count or 0,
                    'limits': USAGE_LIMITS.get(record.feature_type)
                }

        return {
            'users': list(users.values()),
            'limits': USAGE_LIMITS,
            'total_users': len(users)
        }

    def get_user_usage_details(self, user_id: str, days: int = 30) -> Optional[dict]:
        """Usage history, active restrictions and violations for one user"""
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            return None

        now = ensure_utc(self.clock())
        since = usage_date_key(now - timedelta(days=days))

        history = self.db.query(UsageRecord).filter(
            UsageRecord.user_id == user_id,
            UsageRecord.usage_date >= since
        ).order_by(UsageRecord.usage_date).all()

        restrictions = self.db.query(UserRestriction).filter(
            UserRestriction.user_id == user_id,
            UserRestriction.is_active.is_(True)
        ).all()

        violations = self.db.query(UsageViolation).filter(
            UsageViolation.user_id == user_id
        ).order_by(UsageViolation.created_at.desc()).limit(100).all()

        return {
            'user': {'id': user.id, 'email': user.email, 'name': user.name},
            'usage_history': [record.to_dict() for record in history],
            'active_restrictions': [
                r.to_dict() for r in restrictions
                if r.end_time is None or ensure_utc(r.end_time) > now
            ],
            'violations': [v.to_dict() for v in violations],
            'limits': USAGE_LIMITS
        }
