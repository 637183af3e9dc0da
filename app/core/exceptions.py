"""
Exception types for AI usage governance.

Limit and restriction rejections are raised as UsageLimitExceeded and rendered
by the handlers in app.middleware.usage_limits. Storage failures inside the
monitoring subsystem never reach the caller: they are logged and the request
is allowed (fail-open).
"""

from datetime import datetime
from typing import Any, Dict, List, Optional


class UsageMonitoringError(Exception):
    """Base class for usage monitoring errors"""
    pass


class UnknownFeature(UsageMonitoringError, ValueError):
    """Raised when a feature type outside the configured limit table is used"""

    def __init__(self, feature_type: Any):
        self.feature_type = feature_type
        super().__init__(f"Unknown AI feature type: {feature_type!r}")


class TrackingUnavailable(UsageMonitoringError):
    """Raised when usage, violation or restriction records cannot be read or written"""
    pass


class UsageLimitExceeded(UsageMonitoringError):
    """
    Governance rejection for a rate-limited feature.

    Carries everything needed to render the 429 response: a short error label,
    user-facing message, structured details and optional next steps.
    """

    status_code = 429

    def __init__(
        self,
        error: str,
        message: str,
        details: Dict[str, Any],
        next_steps: Optional[List[str]] = None,
        retry_after: Optional[int] = None,
    ):
        self.error = error
        self.message = message
        self.details = details
        self.next_steps = next_steps
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        details = {
            key: value.isoformat() if isinstance(value, datetime) else value
            for key, value in self.details.items()
        }
        body = {"error": self.error, "message": self.message, "details": details}
        if self.next_steps:
            body["next_steps"] = list(self.next_steps)
        return body


class AppealError(Exception):
    """Raised when an appeal cannot be submitted or reviewed"""
    pass


class AppealNotFound(AppealError):
    """Raised when an appeal or its restriction does not exist"""
    pass
