"""Shared test fixtures for all tests"""

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key-with-at-least-thirty-two-bytes"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["USAGE_SCHEDULER_ENABLED"] = "false"
os.environ["LOG_USAGE_EVENTS"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base, get_db
from app.core.exceptions import UnknownFeature, UsageLimitExceeded
from app.core.security import create_access_token
from app.middleware.rate_limit import limiter
from app.middleware.usage_limits import (
    check_usage_restrictions, unknown_feature_handler, usage_limit_exceeded_handler
)
from app.models import User, UsageRecord, UserRestriction
from app.services.usage_gate import GateDecision

# Wednesday afternoon, outside the off-hours window
START_TIME = datetime(2025, 3, 12, 14, 30, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock injected into the services"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def engine():
    """In-memory SQLite shared by every session of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(START_TIME)


# ============================================================================
# Users
# ============================================================================

def _create_user(db, email: str, is_admin: bool = False) -> User:
    user = User(email=email, name=email.split("@")[0], is_admin=is_admin, subscription_status="free")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def user(db_session):
    return _create_user(db_session, "applicant@example.com")


@pytest.fixture
def other_user(db_session):
    return _create_user(db_session, "other@example.com")


@pytest.fixture
def admin_user(db_session):
    return _create_user(db_session, "admin@example.com", is_admin=True)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


# ============================================================================
# Record helpers
# ============================================================================

def make_record(db, user_id: str, feature_type: str, usage_date: str, daily: int = 0,
                weekly: int = 0, monthly: int = 0, hour: int = 14) -> UsageRecord:
    record = UsageRecord(
        user_id=user_id,
        feature_type=feature_type,
        usage_date=usage_date,
        hourly_count=daily,
        daily_count=daily,
        weekly_count=weekly,
        monthly_count=monthly,
        last_hour=hour
    )
    db.add(record)
    db.commit()
    return record


def make_restriction(db, user_id: str, feature_type: str, end_time, start_time=None,
                     can_appeal: bool = True) -> UserRestriction:
    restriction = UserRestriction(
        user_id=user_id,
        feature_type=feature_type,
        restriction_type="rate_limit",
        start_time=start_time,
        end_time=end_time,
        reason="Exceeded daily usage limit (8/8)",
        limit_period="daily",
        usage_count=8,
        usage_limit=8,
        can_appeal=can_appeal,
        is_active=True
    )
    db.add(restriction)
    db.commit()
    return restriction


# ============================================================================
# HTTP clients
# ============================================================================

@pytest.fixture
def client(db_session):
    """TestClient for the application, bound to the test database"""
    from app.main import app

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def gated_client(db_session):
    """A minimal app with one AI route guarded by the usage gate"""
    gated_app = FastAPI()
    gated_app.state.limiter = limiter
    gated_app.add_exception_handler(UsageLimitExceeded, usage_limit_exceeded_handler)
    gated_app.add_exception_handler(UnknownFeature, unknown_feature_handler)

    @gated_app.post("/generate/supporting-info")
    async def generate_supporting_info(
        decision: GateDecision = Depends(check_usage_restrictions("supporting_info"))
    ):
        return {"generated": True, "degraded": decision.degraded}

    def override_get_db():
        yield db_session

    gated_app.dependency_overrides[get_db] = override_get_db
    return TestClient(gated_app)
