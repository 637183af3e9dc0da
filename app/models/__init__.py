from app.core.database import Base
from .user import User
from .usage_monitoring import (
    HourlyWindow, UsageRecord, UsageEvent, UsageViolation, UserRestriction, UsageAppeal
)

__all__ = [
    "Base", "User", "HourlyWindow", "UsageRecord", "UsageEvent",
    "UsageViolation", "UserRestriction", "UsageAppeal"
]
