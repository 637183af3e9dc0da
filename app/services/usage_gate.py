"""
Per-request usage gate for the rate-limited AI features.

Decides, before the guarded action runs, whether a request may proceed:
active restrictions block immediately, a period already at its limit blocks
and restricts the feature, otherwise the request is counted and warning
signals are collected for the response. Any unexpected failure while deciding
allows the request (fail-open).
"""

import hashlib
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from app.core.exceptions import UsageLimitExceeded
from app.core.usage_limits import (
    PERIODS,
    USAGE_LIMITS,
    format_limit_message,
    get_feature_messages,
    normalize_feature_type,
    restricted_next_steps,
)
from app.models.usage_monitoring import UserRestriction
from app.services.usage_monitor import WARNING_TYPES, UsageMonitor
from app.utils.time_utils import ensure_utc, seconds_until
from app.utils.usage_logger import usage_logger

logger = logging.getLogger(__name__)

USAGE_WARNING_MESSAGE = "Approaching usage limits"


@dataclass
class GateDecision:
    """Outcome of an allowed request"""
    headers: Dict[str, str] = field(default_factory=dict)
    warnings: List[dict] = field(default_factory=list)
    suspicious_patterns: List[dict] = field(default_factory=list)
    degraded: bool = False  # True when monitoring failed and the request was let through


def hash_content(content: Optional[bytes]) -> Optional[str]:
    if not content:
        return None
    return hashlib.sha256(content).hexdigest()


def usage_headers(usage: Dict[str, int], limits: Dict[str, int]) -> Dict[str, str]:
    return {
        f"X-Usage-{period.capitalize()}": f"{usage[f'{period}_count']}/{limits[period]}"
        for period in PERIODS
    }


class UsageGate:
    """Applies the usage policy for one feature request"""

    def __init__(self, monitor: UsageMonitor):
        self.monitor = monitor

    def evaluate(self, user_id: Optional[str], feature_type: str,
                 content: Optional[bytes] = None) -> GateDecision:
        """
        Decide whether the request may proceed.

        Raises:
            UsageLimitExceeded: the feature is restricted or a limit is reached
            UnknownFeature: the feature type is not configured
        """
        feature_type = normalize_feature_type(feature_type)

        # Anonymous and system calls are not metered
        if not user_id:
            return GateDecision()

        try:
            return self._evaluate(user_id, feature_type, hash_content(content))
        except UsageLimitExceeded:
            raise
        except Exception as e:
            logger.error(f"Usage monitoring error for user {user_id}, feature {feature_type}: {str(e)}")
            try:
                self.monitor.db.rollback()
            except Exception as rollback_error:
                logger.error(f"Rollback after usage monitoring error failed: {str(rollback_error)}")
            return GateDecision(degraded=True)

    def _evaluate(self, user_id: str, feature_type: str, content_hash: Optional[str]) -> GateDecision:
        restrictions = self.monitor.check_restrictions(user_id, feature_type)
        if restrictions:
            raise self._restricted_error(feature_type, restrictions[0])

        limits = USAGE_LIMITS[feature_type]
        usage = self.monitor.get_current_usage(user_id, feature_type)
        self._reject_if_at_limit(user_id, feature_type, usage, limits)

        if not self.monitor.consume_usage(user_id, feature_type, content_hash):
            # Another request took the last slot between the read and the increment
            usage = self.monitor.get_current_usage(user_id, feature_type)
            self._reject_if_at_limit(user_id, feature_type, usage, limits)
            logger.warning(f"Usage for user {user_id} on {feature_type} was not counted; allowing request")
            return GateDecision(degraded=True)

        decision = GateDecision()
        updated_usage = self.monitor.get_current_usage(user_id, feature_type)
        decision.headers.update(usage_headers(updated_usage, limits))

        violations = self.monitor.check_violations(user_id, feature_type)
        decision.warnings = [v for v in violations if v['type'] in WARNING_TYPES]
        if decision.warnings:
            decision.headers["X-Usage-Warning"] = USAGE_WARNING_MESSAGE

        decision.suspicious_patterns = self.monitor.check_suspicious_patterns(
            user_id, feature_type, content_hash
        )
        return decision

    def _reject_if_at_limit(self, user_id: str, feature_type: str,
                            usage: Dict[str, int], limits: Dict[str, int]) -> None:
        for period in PERIODS:
            current = usage[f'{period}_count']
            limit = limits[period]
            if current >= limit:
                violation = {
                    'type': 'limit_exceeded',
                    'period': period,
                    'current': current,
                    'limit': limit,
                    'percentage': current / limit
                }
                restriction = self.monitor.apply_restriction(user_id, feature_type, violation)
                usage_logger.log_usage_event(
                    event_type="request_blocked",
                    user_id=user_id,
                    feature_type=feature_type,
                    details={"period": period, "current": current, "limit": limit},
                    severity="WARNING"
                )
                raise self._limit_error(feature_type, period, current, limit, restriction)

    def _retry_after(self, restriction: Optional[UserRestriction]) -> Optional[int]:
        if restriction is None or restriction.end_time is None:
            return None
        return int(math.ceil(seconds_until(restriction.end_time, self.monitor.now())))

    def _restricted_error(self, feature_type: str, restriction: UserRestriction) -> UsageLimitExceeded:
        messages = get_feature_messages(feature_type)
        details = {
            'restriction_type': restriction.restriction_type,
            'reason': restriction.reason,
            'end_time': ensure_utc(restriction.end_time),
            'can_appeal': restriction.can_appeal,
            'feature': feature_type,
        }
        if restriction.limit_period:
            details.update({
                'period': restriction.limit_period,
                'current': restriction.usage_count,
                'limit': restriction.usage_limit,
            })
        return UsageLimitExceeded(
            error='Usage Restricted',
            message=messages['restricted'],
            details=details,
            next_steps=restricted_next_steps(feature_type),
            retry_after=self._retry_after(restriction)
        )

    def _limit_error(self, feature_type: str, period: str, current: int, limit: int,
                     restriction: Optional[UserRestriction]) -> UsageLimitExceeded:
        return UsageLimitExceeded(
            error='Usage Limit Exceeded',
            message=format_limit_message(feature_type, period, current, limit),
            details={
                'period': period,
                'current': current,
                'limit': limit,
                'feature': feature_type,
                'reset_info': f"Your {period} limit will reset automatically",
            },
            retry_after=self._retry_after(restriction)
        )
