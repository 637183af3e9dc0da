from datetime import datetime, timedelta
from typing import Callable, Dict, Optional
import logging

from sqlalchemy import update, delete
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.usage_limits import PERIODS, normalize_feature_type
from app.models.usage_monitoring import UsageEvent, UsageRecord, UserRestriction
from app.utils.time_utils import ensure_utc, next_midnight, next_monday, next_month_start, usage_date_key, utcnow
from app.utils.usage_logger import usage_logger

logger = logging.getLogger(__name__)

RESET_PERIODS = PERIODS + ('all',)


def get_reset_schedule(now: Optional[datetime] = None) -> Dict[str, object]:
    """Next UTC reset boundaries, for display only"""
    now = ensure_utc(now or utcnow())
    return {
        'daily': 'Every day at 00:00 UTC',
        'weekly': 'Every Monday at 00:00 UTC',
        'monthly': '1st of every month at 00:00 UTC',
        'next_daily': next_midnight(now),
        'next_weekly': next_monday(now),
        'next_monthly': next_month_start(now)
    }


class UsageResetService:
    """Batch and targeted resets of AI usage counters and restrictions"""

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utcnow

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def _reset_column(self, column: str) -> int:
        """Zero one counter column on every usage record"""
        logger.info(f"Starting {column} reset...")
        try:
            result = self.db.execute(
                update(UsageRecord)
                .values({column: 0, 'updated_at': self.now()})
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error resetting {column}: {str(e)}")
            self.db.rollback()
            raise

        logger.info(f"Reset {column} on {result.rowcount} usage records")
        usage_logger.log_counter_reset(column, result.rowcount)
        return result.rowcount

    def reset_daily_counters(self) -> int:
        return self._reset_column('daily_count')

    def reset_weekly_counters(self) -> int:
        return self._reset_column('weekly_count')

    def reset_monthly_counters(self) -> int:
        return self._reset_column('monthly_count')

    def cleanup_expired_restrictions(self) -> int:
        """Deactivate active restrictions whose end time has passed"""
        now = self.now()
        logger.info("Cleaning up expired restrictions...")
        try:
            result = self.db.execute(
                update(UserRestriction)
                .where(
                    UserRestriction.is_active.is_(True),
                    UserRestriction.end_time.is_not(None),
                    UserRestriction.end_time < now
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error cleaning up expired restrictions: {str(e)}")
            self.db.rollback()
            raise

        logger.info(f"Deactivated {result.rowcount} expired restrictions")
        if result.rowcount:
            usage_logger.log_restrictions_lifted(None, None, result.rowcount, trigger="expired")
        return result.rowcount

    def prune_usage_events(self, max_age_hours: Optional[int] = None) -> int:
        """Delete per-request events older than the pattern detection horizon"""
        max_age_hours = max_age_hours or settings.USAGE_EVENT_RETENTION_HOURS
        cutoff = self.now() - timedelta(hours=max_age_hours)
        try:
            result = self.db.execute(
                delete(UsageEvent)
                .where(UsageEvent.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error pruning usage events: {str(e)}")
            self.db.rollback()
            raise

        logger.info(f"Pruned {result.rowcount} usage events older than {max_age_hours}h")
        return result.rowcount

    def reset_user_feature_counters(self, user_id: str, feature_type: str, period: str = 'all') -> dict:
        """
        Zero today's counters for one user and feature and lift their active restrictions.

        Args:
            user_id: The user to reset
            feature_type: One of the configured feature keys
            period: 'daily', 'weekly', 'monthly' or 'all'

        Returns:
            Summary with the number of counters and restrictions touched
        """
        feature_type = normalize_feature_type(feature_type)
        if period not in RESET_PERIODS:
            raise ValueError(f"Unknown reset period: {period!r}")

        now = self.now()
        logger.info(f"Resetting {period} counters for user {user_id}, feature {feature_type}...")
        try:
            record = self.db.query(UsageRecord).filter(
                UsageRecord.user_id == user_id,
                UsageRecord.feature_type == feature_type,
                UsageRecord.usage_date == usage_date_key(now)
            ).first()

            reset_periods = PERIODS if period == 'all' else (period,)
            if record:
                for reset_period in reset_periods:
                    setattr(record, f'{reset_period}_count', 0)
                record.updated_at = now

            result = self.db.execute(
                update(UserRestriction)
                .where(
                    UserRestriction.user_id == user_id,
                    UserRestriction.feature_type == feature_type,
                    UserRestriction.is_active.is_(True)
                )
                .values(is_active=False, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception as e:
            logger.error(f"Error resetting counters for user {user_id}, feature {feature_type}: {str(e)}")
            self.db.rollback()
            raise

        logger.info(f"Counters reset for user {user_id}, feature {feature_type}")
        usage_logger.log_counter_reset(period, 1 if record else 0, user_id=user_id, feature_type=feature_type)
        if result.rowcount:
            usage_logger.log_restrictions_lifted(user_id, feature_type, result.rowcount, trigger="manual_reset")

        return {
            'user_id': user_id,
            'feature_type': feature_type,
            'period': period,
            'record_reset': record is not None,
            'restrictions_lifted': result.rowcount
        }

    def get_reset_schedule(self) -> Dict[str, object]:
        return get_reset_schedule(self.now())
