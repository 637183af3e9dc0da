from dataclasses import dataclass
from typing import Optional

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
)
from sqlalchemy.sql import func

from app.core.database import Base
from app.utils.id_utils import generate_id


@dataclass(frozen=True)
class HourlyWindow:
    """Requests counted within a single wall-clock hour"""
    hour: Optional[int]
    count: int

    def count_at(self, hour: int) -> int:
        # A count from another hour is stale
        return self.count if self.hour == hour else 0

    def bump(self, hour: int) -> "HourlyWindow":
        return HourlyWindow(hour=hour, count=self.count_at(hour) + 1)


class UsageRecord(Base):
    """Per user, per feature, per day AI usage counters"""
    __tablename__ = "ai_usage_tracking"
    __table_args__ = (
        UniqueConstraint("user_id", "feature_type", "usage_date", name="uq_usage_user_feature_date"),
        Index("idx_usage_user_feature_date", "user_id", "feature_type", "usage_date"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    feature_type = Column(String, nullable=False)
    usage_date = Column(String, nullable=False)  # Format: "2025-01-31"
    hourly_count = Column(Integer, nullable=False, default=0)
    daily_count = Column(Integer, nullable=False, default=0)
    weekly_count = Column(Integer, nullable=False, default=0)
    monthly_count = Column(Integer, nullable=False, default=0)
    last_hour = Column(Integer, nullable=True)  # 0-23
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def hourly_window(self) -> HourlyWindow:
        return HourlyWindow(hour=self.last_hour, count=self.hourly_count or 0)

    @hourly_window.setter
    def hourly_window(self, window: HourlyWindow) -> None:
        self.last_hour = window.hour
        self.hourly_count = window.count

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "feature_type": self.feature_type,
            "usage_date": self.usage_date,
            "hourly_count": self.hourly_count,
            "daily_count": self.daily_count,
            "weekly_count": self.weekly_count,
            "monthly_count": self.monthly_count,
            "last_hour": self.last_hour,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class UsageEvent(Base):
    """One row per tracked request, kept briefly for pattern detection"""
    __tablename__ = "ai_usage_events"
    __table_args__ = (
        Index("idx_usage_events_user_feature_time", "user_id", "feature_type", "created_at"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    feature_type = Column(String, nullable=False)
    content_hash = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class UsageViolation(Base):
    """Append-only log of crossed thresholds and suspicious patterns"""
    __tablename__ = "usage_violations"
    __table_args__ = (
        Index("idx_violations_user_feature", "user_id", "feature_type"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    violation_type = Column(String, nullable=False)  # first_warning, final_warning, limit_exceeded, suspicious_pattern
    feature_type = Column(String, nullable=False)
    violation_details = Column(JSON)
    warning_sent = Column(Boolean, nullable=False, default=False)
    restriction_applied = Column(Boolean, nullable=False, default=False)
    resolved = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "violation_type": self.violation_type,
            "feature_type": self.feature_type,
            "violation_details": self.violation_details,
            "warning_sent": self.warning_sent,
            "restriction_applied": self.restriction_applied,
            "resolved": self.resolved,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UserRestriction(Base):
    """Temporary or indefinite block on one feature for one user"""
    __tablename__ = "user_restrictions"
    __table_args__ = (
        Index("idx_restrictions_user_active", "user_id", "is_active"),
    )

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    feature_type = Column(String, nullable=False)
    restriction_type = Column(String, nullable=False, default="rate_limit")  # rate_limit, temporary_ban, under_review
    start_time = Column(DateTime(timezone=True), nullable=True)
    end_time = Column(DateTime(timezone=True), nullable=True)  # NULL = indefinite
    reason = Column(Text)
    limit_period = Column(String, nullable=True)
    usage_count = Column(Integer, nullable=True)
    usage_limit = Column(Integer, nullable=True)
    can_appeal = Column(Boolean, nullable=False, default=True)
    appeal_submitted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "feature_type": self.feature_type,
            "restriction_type": self.restriction_type,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "reason": self.reason,
            "period": self.limit_period,
            "current": self.usage_count,
            "limit": self.usage_limit,
            "can_appeal": self.can_appeal,
            "appeal_submitted": self.appeal_submitted,
            "is_active": self.is_active,
        }


class UsageAppeal(Base):
    """User appeal against a restriction, reviewed by an admin"""
    __tablename__ = "usage_appeals"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    restriction_id = Column(String, ForeignKey("user_restrictions.id"), nullable=False, index=True)
    appeal_reason = Column(Text)
    status = Column(String, nullable=False, default="pending")  # pending, approved, rejected
    admin_response = Column(Text)
    reviewed_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
