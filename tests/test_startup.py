"""Tests for startup validation and the scheduler lifecycle"""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core import startup, usage_limits
from app.core.config import Settings, settings
from app.core.startup import StartupValidationError, lifespan, perform_startup_validation


def test_configuration_is_valid():
    assert perform_startup_validation() is True


def test_short_secret_key_fails_validation(monkeypatch):
    monkeypatch.setattr(settings, "SECRET_KEY", "too-short")

    assert perform_startup_validation() is False
    with pytest.raises(StartupValidationError, match="SECRET_KEY is too short"):
        perform_startup_validation(strict=True)


def test_broken_limit_table_fails_validation(monkeypatch):
    monkeypatch.setitem(usage_limits.WARNING_THRESHOLDS, 'final_warning', 0.5)

    with pytest.raises(StartupValidationError, match="Warning thresholds"):
        perform_startup_validation(strict=True)


class FakeScheduler:
    instances = []

    def __init__(self):
        self.started = False
        self.stopped = False
        FakeScheduler.instances.append(self)

    def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True


def test_scheduler_follows_application_lifecycle(monkeypatch):
    FakeScheduler.instances = []
    monkeypatch.setattr(startup, "UsageResetScheduler", FakeScheduler)
    monkeypatch.setattr(settings, "USAGE_SCHEDULER_ENABLED", True)
    lifecycle_app = FastAPI(lifespan=lifespan)

    with TestClient(lifecycle_app):
        scheduler = lifecycle_app.state.usage_scheduler
        assert scheduler.started is True

    assert scheduler.stopped is True
    assert lifecycle_app.state.usage_scheduler is None
    assert len(FakeScheduler.instances) == 1


def test_scheduler_disabled(monkeypatch):
    monkeypatch.setattr(settings, "USAGE_SCHEDULER_ENABLED", False)
    lifecycle_app = FastAPI(lifespan=lifespan)

    with TestClient(lifecycle_app):
        assert lifecycle_app.state.usage_scheduler is None


def test_application_starts_scheduler_on_startup(monkeypatch):
    from app.main import app

    FakeScheduler.instances = []
    monkeypatch.setattr(startup, "UsageResetScheduler", FakeScheduler)
    monkeypatch.setattr(settings, "USAGE_SCHEDULER_ENABLED", True)

    with TestClient(app) as client:
        assert client.get("/health").json() == {"status": "healthy"}
        assert app.state.usage_scheduler.started is True

    assert FakeScheduler.instances[0].stopped is True
    assert app.state.usage_scheduler is None


def test_settings_ignore_unknown_environment(monkeypatch):
    monkeypatch.setenv("STRIPE_SECRET_KEY", "sk_test_unused")
    monkeypatch.setenv("USAGE_RATE_LIMIT", "20/minute")

    loaded = Settings(_env_file=None)

    assert loaded.USAGE_RATE_LIMIT == "20/minute"
    assert not hasattr(loaded, "STRIPE_SECRET_KEY")
