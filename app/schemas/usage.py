from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List, Optional
from datetime import datetime

from app.core.usage_limits import normalize_feature_type


class UsageResetRequest(BaseModel):
    user_id: str
    feature_type: str
    period: str = "all"

    @field_validator('feature_type')
    @classmethod
    def validate_feature_type(cls, v):
        return normalize_feature_type(v)

    @field_validator('period')
    @classmethod
    def validate_period(cls, v):
        if v not in ('daily', 'weekly', 'monthly', 'all'):
            raise ValueError("period must be one of daily, weekly, monthly, all")
        return v


class UsageResetResult(BaseModel):
    message: str
    user_id: str
    feature_type: str
    period: str
    record_reset: bool
    restrictions_lifted: int


class BatchResetResult(BaseModel):
    message: str
    job: str
    affected: int


class CurrentUsage(BaseModel):
    hourly_count: int = 0
    daily_count: int = 0
    weekly_count: int = 0
    monthly_count: int = 0


class UsageStats(BaseModel):
    usage: List[dict]
    restrictions: List[dict]
    limits: Dict[str, Dict[str, int]]


class AppealCreate(BaseModel):
    restriction_id: str
    reason: str = Field(..., min_length=10, max_length=2000)


class AppealReview(BaseModel):
    approve: bool
    response: Optional[str] = Field(None, max_length=2000)


class Appeal(BaseModel):
    id: str
    user_id: str
    restriction_id: str
    appeal_reason: Optional[str] = None
    status: str
    admin_response: Optional[str] = None
    reviewed_by: Optional[str] = None
    created_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
