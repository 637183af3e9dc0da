"""
Usage limits configuration for the AI document features.

Values are static and are not read from the environment.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from app.core.exceptions import UnknownFeature

PERIODS: Tuple[str, ...] = ('daily', 'weekly', 'monthly')

USAGE_LIMITS: Dict[str, Dict[str, int]] = {
    # CV job duties (Henry helper)
    'cv_job_duties': {
        'daily': 12,
        'weekly': 18,
        'monthly': 20
    },
    'supporting_info': {
        'daily': 8,
        'weekly': 25,
        'monthly': 75
    },
    'cover_letter': {
        'daily': 8,
        'weekly': 15,
        'monthly': 45
    },
    # Interview practice sessions
    'interview_practice': {
        'daily': 15,
        'weekly': 40,
        'monthly': 90
    },
    # Q&A generator sessions
    'qa_generator': {
        'daily': 8,
        'weekly': 16,
        'monthly': 30
    }
}

# Fractions of a limit
WARNING_THRESHOLDS: Dict[str, float] = {
    'first_warning': 0.75,
    'final_warning': 0.90,
    'restriction': 1.0
}

SUSPICIOUS_PATTERNS: Dict[str, dict] = {
    'rapid_requests': {
        'requests_per_minute': 8,   # More than 8 requests per minute
        'duration_minutes': 3       # Sustained for 3 minutes
    },
    'identical_content': {
        'threshold': 3,             # Same content submitted 3+ times
        'window_minutes': 10
    },
    'off_hours_usage': {
        'requests_per_hour': 25,    # More than 25 requests between 1-5 AM
        'time_range': (1, 5)
    },
    'burst_detection': {
        'max_requests_per_5min': 20,
        'burst_threshold': 3        # 3 bursts in an hour
    }
}

# Hours to restrict, by offense tier and breached period
RESTRICTION_DURATIONS: Dict[str, Dict[str, int]] = {
    'first_offense': {
        'daily': 6,
        'weekly': 24,
        'monthly': 72
    },
    'repeat_offense': {
        'daily': 12,
        'weekly': 48,
        'monthly': 168
    },
    'severe_abuse': {
        'daily': 72,
        'weekly': 168,
        'monthly': 720
    }
}

FEATURE_DISPLAY_NAMES: Dict[str, str] = {
    'cv_job_duties': 'CV Job Duties',
    'supporting_info': 'Supporting Information Generator',
    'cover_letter': 'Cover Letter Generator',
    'interview_practice': 'Interview Practice Generator',
    'qa_generator': 'Q&A Generator'
}

# Rejection copy, keyed by feature. Features without an entry use 'default'.
FEATURE_MESSAGES: Dict[str, Dict[str, object]] = {
    'default': {
        'restricted': 'AI feature usage is temporarily limited.',
        'restricted_next_steps': [
            'Normal access will resume automatically after the restriction period',
            'If you believe this is an error, please contact support',
            'You can continue using other platform features normally',
        ],
        'limit_exceeded': (
            "You've hit the usage limit for this feature. Our system detected patterns "
            "that suggest the tool may not be used as intended. You can wait for your "
            "allowance to reset, or contact us if you believe this is an error."
        ),
    },
    'cv_job_duties': {
        'restricted': (
            "You've hit the usage limit for this feature. Our system detected patterns "
            "that suggest the tool may not be used as intended. You can wait for your "
            "allowance to reset or contact us if you believe this is an error. "
            "See our support page for more."
        ),
        'restricted_next_steps': None,
        'limit_exceeded': (
            "You've reached your {period} limit of {limit} requests for Henry's job "
            "duties feature. Please wait for your allowance to reset."
        ),
    },
}


def normalize_feature_type(feature_type) -> str:
    """Return the canonical feature key or raise UnknownFeature"""
    if not isinstance(feature_type, str):
        raise UnknownFeature(feature_type)
    normalized = feature_type.strip().lower()
    if normalized not in USAGE_LIMITS:
        raise UnknownFeature(feature_type)
    return normalized


def get_feature_limits(feature_type: str) -> Dict[str, int]:
    return USAGE_LIMITS[normalize_feature_type(feature_type)]


def get_feature_display_name(feature_type: str) -> str:
    return FEATURE_DISPLAY_NAMES.get(feature_type, feature_type)


def get_feature_messages(feature_type: str) -> Dict[str, object]:
    """Merge a feature's bespoke copy over the default copy"""
    messages = dict(FEATURE_MESSAGES['default'])
    messages.update(FEATURE_MESSAGES.get(feature_type, {}))
    return messages


def format_limit_message(feature_type: str, period: str, current: int, limit: int) -> str:
    template = get_feature_messages(feature_type)['limit_exceeded']
    return template.format(
        period=period,
        current=current,
        limit=limit,
        feature=get_feature_display_name(feature_type)
    )


def restricted_next_steps(feature_type: str) -> Optional[List[str]]:
    return get_feature_messages(feature_type).get('restricted_next_steps')


def classify_usage(current: int, limit: int) -> Optional[str]:
    """Map a usage/limit ratio onto a violation type (None below the first warning)"""
    percentage = current / limit
    if percentage >= WARNING_THRESHOLDS['restriction']:
        return 'limit_exceeded'
    if percentage >= WARNING_THRESHOLDS['final_warning']:
        return 'final_warning'
    if percentage >= WARNING_THRESHOLDS['first_warning']:
        return 'first_warning'
    return None


def is_off_hours(hour: int) -> bool:
    start_hour, end_hour = SUSPICIOUS_PATTERNS['off_hours_usage']['time_range']
    return start_hour <= hour <= end_hour


def calculate_restriction_end_time(offense_tier: str, period: str, now: datetime) -> datetime:
    hours = RESTRICTION_DURATIONS[offense_tier][period]
    return now + timedelta(hours=hours)


def validate_limit_configuration() -> List[str]:
    """Return a list of problems with the static limit tables (empty when valid)"""
    issues = []
    for feature, limits in USAGE_LIMITS.items():
        for period in PERIODS:
            value = limits.get(period)
            if not isinstance(value, int) or value <= 0:
                issues.append(f"{feature}.{period} must be a positive integer")
        if feature not in FEATURE_DISPLAY_NAMES:
            issues.append(f"{feature} has no display name")

    thresholds = WARNING_THRESHOLDS
    if not 0 < thresholds['first_warning'] < thresholds['final_warning'] < thresholds['restriction']:
        issues.append("Warning thresholds must be increasing and below the restriction threshold")

    for tier, durations in RESTRICTION_DURATIONS.items():
        missing = [period for period in PERIODS if period not in durations]
        if missing:
            issues.append(f"{tier} has no duration for: {', '.join(missing)}")

    return issues
