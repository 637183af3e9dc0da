"""Tests for the usage reset scheduler"""

import asyncio
import logging
from datetime import datetime, timedelta

import pytest

from app.models import UsageRecord
from app.services import usage_scheduler
from app.services.usage_scheduler import UsageResetScheduler
from app.utils.time_utils import utcnow
from tests.conftest import make_record


@pytest.fixture
def scheduler(session_factory, clock):
    return UsageResetScheduler(session_factory=session_factory, clock=clock)


@pytest.fixture
def recorded_runs(scheduler):
    """Replace job execution with a recorder so no database work runs on the loop"""
    runs = []

    async def fake_run_job(name):
        runs.append(name)
        return True

    scheduler.run_job = fake_run_job
    return runs


async def wait_for_runs(runs, expected: int, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while len(runs) < expected and asyncio.get_running_loop().time() < deadline:
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_start_schedules_every_job(scheduler, recorded_runs):
    before = utcnow()
    scheduler.start()
    try:
        status = scheduler.get_status()
        assert status['initialized'] is True
        assert status['active_jobs'] == 4
        assert sorted(status['jobs']) == ['daily_reset', 'monthly_reset', 'restriction_cleanup', 'weekly_reset']

        daily = datetime.fromisoformat(status['next_runs']['daily_reset'])
        assert daily.utcoffset() == timedelta(0)
        assert (daily.hour, daily.minute, daily.second) == (0, 0, 0)
        assert before < daily <= before + timedelta(days=1)

        weekly = datetime.fromisoformat(status['next_runs']['weekly_reset'])
        assert weekly.weekday() == 0
        assert (weekly.hour, weekly.minute) == (0, 0)
        assert before < weekly <= before + timedelta(days=7)
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_monthly_and_cleanup_run_immediately(scheduler, recorded_runs):
    scheduler.start()
    try:
        await wait_for_runs(recorded_runs, 2)
        assert sorted(recorded_runs) == ['monthly_reset', 'restriction_cleanup']

        status = scheduler.get_status()
        monthly = datetime.fromisoformat(status['next_runs']['monthly_reset'])
        assert monthly > utcnow() + timedelta(days=29)
        cleanup = datetime.fromisoformat(status['next_runs']['restriction_cleanup'])
        assert utcnow() < cleanup <= utcnow() + timedelta(hours=1)
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_shuts_down_every_job(scheduler, recorded_runs):
    scheduler.start()
    await scheduler.stop()

    status = scheduler.get_status()
    assert status['initialized'] is False
    assert status['active_jobs'] == 0
    assert scheduler.is_running is False


@pytest.mark.asyncio
async def test_start_is_not_repeated_while_running(scheduler, recorded_runs):
    scheduler.start()
    first_scheduler = scheduler._scheduler
    try:
        scheduler.start()
        assert scheduler._scheduler is first_scheduler
        assert scheduler.get_status()['active_jobs'] == 4
    finally:
        await scheduler.stop()


@pytest.mark.asyncio
async def test_schedulers_are_independent(session_factory, clock):
    first = UsageResetScheduler(session_factory=session_factory, clock=clock)
    second = UsageResetScheduler(session_factory=session_factory, clock=clock)
    for instance in (first, second):
        async def noop(name):
            return True
        instance.run_job = noop

    first.start()
    try:
        assert first.is_running is True
        assert second.is_running is False
    finally:
        await first.stop()


@pytest.mark.asyncio
async def test_run_job_resets_counters(scheduler, db_session, user):
    make_record(db_session, user.id, 'cover_letter', '2025-03-12', daily=5, weekly=6, monthly=7)

    assert await scheduler.run_job('daily_reset') is True

    db_session.expire_all()
    record = db_session.query(UsageRecord).one()
    assert (record.daily_count, record.weekly_count, record.monthly_count) == (0, 6, 7)
    assert scheduler.get_status()['last_runs']['daily_reset']['success'] is True


@pytest.mark.asyncio
async def test_failed_job_is_logged_and_reported(scheduler, monkeypatch, caplog):
    def failing_reset(service):
        raise RuntimeError("database unavailable")

    monkeypatch.setitem(usage_scheduler.JOB_ACTIONS, 'weekly_reset', failing_reset)

    with caplog.at_level(logging.ERROR, logger="app.services.usage_scheduler"):
        assert await scheduler.run_job('weekly_reset') is False

    assert "Error in scheduled weekly_reset: database unavailable" in caplog.text
    last_run = scheduler.get_status()['last_runs']['weekly_reset']
    assert last_run['success'] is False
    assert last_run['error'] == "database unavailable"
