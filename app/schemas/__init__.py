from .usage import (
    UsageResetRequest, UsageResetResult, BatchResetResult, CurrentUsage, UsageStats,
    AppealCreate, AppealReview, Appeal
)

__all__ = [
    "UsageResetRequest", "UsageResetResult", "BatchResetResult",
    "CurrentUsage", "UsageStats",
    "AppealCreate", "AppealReview", "Appeal"
]
