from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging

from sqlalchemy import case, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import TrackingUnavailable
from app.core.usage_limits import (
    PERIODS,
    SUSPICIOUS_PATTERNS,
    USAGE_LIMITS,
    calculate_restriction_end_time,
    classify_usage,
    is_off_hours,
    normalize_feature_type,
)
from app.models.usage_monitoring import (
    HourlyWindow, UsageEvent, UsageRecord, UsageViolation, UserRestriction
)
from app.utils.time_utils import ensure_utc, usage_date_key, utcnow
from app.utils.usage_logger import usage_logger

logger = logging.getLogger(__name__)

WARNING_TYPES = ('first_warning', 'final_warning')


class UsageMonitor:
    """
    Tracks AI feature usage per user and enforces the configured limits.

    Holds no state between calls: every operation reads and writes the
    database through the session it was created with. All time windows are
    evaluated against ``clock()``, which defaults to the current UTC time.
    """

    def __init__(self, db: Session, clock: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.clock = clock or utcnow

    def now(self) -> datetime:
        return ensure_utc(self.clock())

    def _get_record(self, user_id: str, feature_type: str, usage_date: str) -> Optional[UsageRecord]:
        return self.db.query(UsageRecord).filter(
            UsageRecord.user_id == user_id,
            UsageRecord.feature_type == feature_type,
            UsageRecord.usage_date == usage_date
        ).first()

    def _increment(self, record_id: str, hour: int, now: datetime, limits: Optional[Dict[str, int]] = None) -> bool:
        """Increment a record's counters in one UPDATE, optionally only while under every limit"""
        statement = (
            update(UsageRecord)
            .where(UsageRecord.id == record_id)
            .values(
                hourly_count=case(
                    (UsageRecord.last_hour == hour, UsageRecord.hourly_count + 1),
                    else_=1
                ),
                daily_count=UsageRecord.daily_count + 1,
                weekly_count=UsageRecord.weekly_count + 1,
                monthly_count=UsageRecord.monthly_count + 1,
                last_hour=hour,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if limits is not None:
            statement = statement.where(
                UsageRecord.daily_count < limits['daily'],
                UsageRecord.weekly_count < limits['weekly'],
                UsageRecord.monthly_count < limits['monthly']
            )
        result = self.db.execute(statement)
        return result.rowcount == 1

    def _insert_record(self, user_id: str, feature_type: str, usage_date: str, hour: int) -> UsageRecord:
        record = UsageRecord(
            user_id=user_id,
            feature_type=feature_type,
            usage_date=usage_date,
            daily_count=1,
            weekly_count=1,
            monthly_count=1
        )
        record.hourly_window = HourlyWindow(hour=hour, count=0).bump(hour)
        self.db.add(record)
        return record

    def _record_event(self, user_id: str, feature_type: str, now: datetime, content_hash: Optional[str]):
        self.db.add(UsageEvent(
            user_id=user_id,
            feature_type=feature_type,
            content_hash=content_hash,
            created_at=now
        ))

    def _count_request(self, user_id: str, feature_type: str, content_hash: Optional[str],
                       limits: Optional[Dict[str, int]]) -> bool:
        now = self.now()
        today = usage_date_key(now)
        hour = now.hour

        record = self._get_record(user_id, feature_type, today)
        if record:
            counted = self._increment(record.id, hour, now, limits)
        else:
            try:
                self._insert_record(user_id, feature_type, today, hour)
                self.db.flush()
                counted = True
            except IntegrityError:
                # A concurrent request created today's row first; nothing else is pending
                self.db.rollback()
                record = self._get_record(user_id, feature_type, today)
                counted = self._increment(record.id, hour, now, limits)

        if counted:
            self._record_event(user_id, feature_type, now, content_hash)
        self.db.commit()
        return counted

    def track_usage(self, user_id: str, feature_type: str, content_hash: Optional[str] = None) -> bool:
        """
        Count one request against today's record for the user and feature.

        Storage errors are logged and swallowed: tracking must never block the
        caller's primary action. Returns False when the request was not recorded.
        """
        feature_type = normalize_feature_type(feature_type)
        try:
            self._count_request(user_id, feature_type, content_hash, limits=None)
            logger.debug(f"Tracked {feature_type} usage for user {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to track {feature_type} usage for user {user_id}: {str(e)}")
            self.db.rollback()
            return False

    def consume_usage(self, user_id: str, feature_type: str, content_hash: Optional[str] = None) -> bool:
        """
        Count one request only if every period is still under its limit.

        The check and the increment happen in a single conditional UPDATE, so
        concurrent requests cannot push a counter past its limit. Returns False
        when the request would exceed a limit.

        Raises:
            TrackingUnavailable: the usage record could not be read or written
        """
        feature_type = normalize_feature_type(feature_type)
        try:
            return self._count_request(user_id, feature_type, content_hash, limits=USAGE_LIMITS[feature_type])
        except SQLAlchemyError as e:
            self.db.rollback()
            raise TrackingUnavailable(f"Could not count {feature_type} usage for user {user_id}") from e

    def get_current_usage(self, user_id: str, feature_type: str) -> Dict[str, int]:
        """Current hourly/daily/weekly/monthly counts; zeros when there is no record for today"""
        feature_type = normalize_feature_type(feature_type)
        now = self.now()
        record = self._get_record(user_id, feature_type, usage_date_key(now))

        if not record:
            return {'hourly_count': 0, 'daily_count': 0, 'weekly_count': 0, 'monthly_count': 0}

        return {
            'hourly_count': record.hourly_window.count_at(now.hour),
            'daily_count': record.daily_count or 0,
            'weekly_count': record.weekly_count or 0,
            'monthly_count': record.monthly_count or 0
        }

    def check_violations(self, user_id: str, feature_type: str) -> List[dict]:
        """Classify each period against its limit and handle every threshold crossed"""
        feature_type = normalize_feature_type(feature_type)
        usage = self.get_current_usage(user_id, feature_type)
        limits = USAGE_LIMITS[feature_type]
        violations = []

        for period in PERIODS:
            current = usage[f'{period}_count']
            limit = limits[period]
            violation_type = classify_usage(current, limit)
            if violation_type:
                violations.append({
                    'type': violation_type,
                    'period': period,
                    'current': current,
                    'limit': limit,
                    'percentage': current / limit
                })

        for violation in violations:
            self.handle_violation(user_id, feature_type, violation)

        return violations

    def handle_violation(self, user_id: str, feature_type: str, violation: dict) -> None:
        """Log the violation, then restrict the feature if the limit itself was reached"""
        try:
            self.db.add(UsageViolation(
                user_id=user_id,
                violation_type=violation['type'],
                feature_type=feature_type,
                violation_details=violation,
                warning_sent=False,
                restriction_applied=False,
                resolved=False
            ))
            self.db.commit()
        except Exception as e:
            logger.error(f"Error recording {violation.get('type')} violation for user {user_id}: {str(e)}")
            self.db.rollback()
            return

        if violation['type'] in WARNING_TYPES:
            label = "First" if violation['type'] == 'first_warning' else "Final"
            logger.info(
                f"{label} warning issued to user {user_id} for {feature_type} "
                f"({violation['period']}: {violation['current']}/{violation['limit']})"
            )
            usage_logger.log_warning_issued(user_id, feature_type, violation)
        elif violation['type'] == 'limit_exceeded':
            self.apply_restriction(user_id, feature_type, violation)

    def apply_restriction(self, user_id: str, feature_type: str, violation: dict,
                          offense_tier: str = 'first_offense') -> Optional[UserRestriction]:
        """Block the feature for the tier's duration for the breached period"""
        try:
            now = self.now()
            period = violation['period']
            end_time = calculate_restriction_end_time(offense_tier, period, now)
            reason = f"Exceeded {period} usage limit ({violation['current']}/{violation['limit']})"

            restriction = UserRestriction(
                user_id=user_id,
                feature_type=feature_type,
                restriction_type='rate_limit',
                start_time=now,
                end_time=end_time,
                reason=reason,
                limit_period=period,
                usage_count=violation['current'],
                usage_limit=violation['limit'],
                can_appeal=True,
                appeal_submitted=False,
                is_active=True
            )
            self.db.add(restriction)
            self.db.commit()

            logger.warning(f"Restriction applied to user {user_id} for {feature_type} until {end_time.isoformat()}")
            usage_logger.log_restriction_applied(user_id, feature_type, restriction.id, end_time, reason)
            return restriction
        except Exception as e:
            logger.error(f"Error applying restriction to user {user_id} for {feature_type}: {str(e)}")
            self.db.rollback()
            return None

    def check_restrictions(self, user_id: str, feature_type: str) -> List[UserRestriction]:
        """
        Active restrictions for the user and feature.

        Rows whose end time has passed are excluded even if the cleanup job has
        not deactivated them yet. Indefinite restrictions sort first, then the
        latest ending.
        """
        feature_type = normalize_feature_type(feature_type)
        now = self.now()
        restrictions = self.db.query(UserRestriction).filter(
            UserRestriction.user_id == user_id,
            UserRestriction.feature_type == feature_type,
            UserRestriction.is_active.is_(True)
        ).all()

        active = [r for r in restrictions if r.end_time is None or ensure_utc(r.end_time) > now]
        active.sort(key=lambda r: (r.end_time is None, ensure_utc(r.end_time) or now), reverse=True)
        return active

    def _recent_events(self, user_id: str, feature_type: str, since: datetime) -> List[UsageEvent]:
        return self.db.query(UsageEvent).filter(
            UsageEvent.user_id == user_id,
            UsageEvent.feature_type == feature_type,
            UsageEvent.created_at >= since
        ).all()

    def _record_suspicious_pattern(self, user_id: str, feature_type: str, pattern: dict) -> None:
        try:
            self.db.add(UsageViolation(
                user_id=user_id,
                violation_type='suspicious_pattern',
                feature_type=feature_type,
                violation_details=pattern
            ))
            self.db.commit()
            logger.warning(f"Suspicious {pattern['pattern']} pattern for user {user_id} on {feature_type}")
            usage_logger.log_suspicious_pattern(user_id, feature_type, pattern)
        except Exception as e:
            logger.error(f"Error recording suspicious pattern for user {user_id}: {str(e)}")
            self.db.rollback()

    @staticmethod
    def _bucket_counts(event_times: List[datetime], now: datetime, bucket_minutes: int, buckets: int) -> List[int]:
        """Count events per bucket, bucket 0 being the most recent"""
        counts = [0] * buckets
        for created_at in event_times:
            age_minutes = (now - created_at).total_seconds() / 60
            index = int(age_minutes // bucket_minutes)
            if 0 <= index < buckets:
                counts[index] += 1
        return counts

    def check_suspicious_patterns(self, user_id: str, feature_type: str,
                                  content_hash: Optional[str] = None) -> List[dict]:
        """
        Flag usage that looks automated. Each detected pattern is logged as a
        suspicious_pattern violation; no restriction is applied.
        """
        feature_type = normalize_feature_type(feature_type)
        now = self.now()
        patterns = []

        off_hours = SUSPICIOUS_PATTERNS['off_hours_usage']
        if is_off_hours(now.hour):
            hourly_count = self.get_current_usage(user_id, feature_type)['hourly_count']
            if hourly_count > off_hours['requests_per_hour']:
                patterns.append({
                    'pattern': 'off_hours_usage',
                    'hour': now.hour,
                    'requests': hourly_count,
                    'threshold': off_hours['requests_per_hour']
                })

        events = self._recent_events(user_id, feature_type, now - timedelta(hours=1))
        event_times = [ensure_utc(event.created_at) for event in events]

        rapid = SUSPICIOUS_PATTERNS['rapid_requests']
        per_minute = self._bucket_counts(event_times, now, 1, rapid['duration_minutes'])
        if all(count > rapid['requests_per_minute'] for count in per_minute):
            patterns.append({
                'pattern': 'rapid_requests',
                'requests_per_minute': per_minute,
                'threshold': rapid['requests_per_minute']
            })

        identical = SUSPICIOUS_PATTERNS['identical_content']
        if content_hash:
            window_start = now - timedelta(minutes=identical['window_minutes'])
            repeats = sum(
                1 for event in events
                if event.content_hash == content_hash and ensure_utc(event.created_at) >= window_start
            )
            if repeats >= identical['threshold']:
                patterns.append({
                    'pattern': 'identical_content',
                    'repeats': repeats,
                    'window_minutes': identical['window_minutes'],
                    'threshold': identical['threshold']
                })

        burst = SUSPICIOUS_PATTERNS['burst_detection']
        per_five_minutes = self._bucket_counts(event_times, now, 5, 12)
        bursts = sum(1 for count in per_five_minutes if count > burst['max_requests_per_5min'])
        if bursts >= burst['burst_threshold']:
            patterns.append({
                'pattern': 'burst_detection',
                'bursts': bursts,
                'max_requests_per_5min': burst['max_requests_per_5min'],
                'threshold': burst['burst_threshold']
            })

        for pattern in patterns:
            self._record_suspicious_pattern(user_id, feature_type, pattern)

        return patterns

    def get_user_usage_stats(self, user_id: str) -> dict:
        """Today's usage records, active restrictions and the limit table for a user"""
        now = self.now()
        usage = self.db.query(UsageRecord).filter(
            UsageRecord.user_id == user_id,
            UsageRecord.usage_date == usage_date_key(now)
        ).all()

        restrictions = self.db.query(UserRestriction).filter(
            UserRestriction.user_id == user_id,
            UserRestriction.is_active.is_(True)
        ).all()

        return {
            'usage': [record.to_dict() for record in usage],
            'restrictions': [
                r.to_dict() for r in restrictions
                if r.end_time is None or ensure_utc(r.end_time) > now
            ],
            'limits': USAGE_LIMITS
        }
