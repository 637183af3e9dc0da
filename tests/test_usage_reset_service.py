"""Tests for batch and targeted usage resets"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import UnknownFeature
from app.models import UsageEvent, UsageRecord, UserRestriction
from app.services.usage_reset_service import UsageResetService, get_reset_schedule
from tests.conftest import START_TIME, make_record, make_restriction

TODAY = '2025-03-12'


@pytest.fixture
def service(db_session, clock):
    return UsageResetService(db_session, clock=clock)


def counts(db_session):
    db_session.expire_all()
    return sorted(
        (r.user_id, r.feature_type, r.daily_count, r.weekly_count, r.monthly_count)
        for r in db_session.query(UsageRecord).all()
    )


class TestBatchResets:

    def test_daily_reset_is_idempotent(self, service, db_session, user, other_user):
        make_record(db_session, user.id, 'cover_letter', TODAY, daily=5, weekly=7, monthly=9)
        make_record(db_session, other_user.id, 'qa_generator', TODAY, daily=3, weekly=3, monthly=3)

        assert service.reset_daily_counters() == 2
        assert service.reset_daily_counters() == 2

        assert counts(db_session) == sorted([
            (user.id, 'cover_letter', 0, 7, 9),
            (other_user.id, 'qa_generator', 0, 3, 3),
        ])

    def test_weekly_reset_only_touches_weekly_counts(self, service, db_session, user):
        make_record(db_session, user.id, 'cover_letter', TODAY, daily=5, weekly=7, monthly=9)

        service.reset_weekly_counters()

        assert counts(db_session) == [(user.id, 'cover_letter', 5, 0, 9)]

    def test_monthly_reset_only_touches_monthly_counts(self, service, db_session, user):
        make_record(db_session, user.id, 'cover_letter', TODAY, daily=5, weekly=7, monthly=9)

        service.reset_monthly_counters()

        assert counts(db_session) == [(user.id, 'cover_letter', 5, 7, 0)]

    def test_reset_with_no_records(self, service):
        assert service.reset_daily_counters() == 0


class TestRestrictionCleanup:

    def test_only_expired_restrictions_are_deactivated(self, service, db_session, user):
        expired = make_restriction(db_session, user.id, 'cover_letter', START_TIME - timedelta(minutes=1))
        current = make_restriction(db_session, user.id, 'cover_letter', START_TIME + timedelta(hours=1))
        indefinite = make_restriction(db_session, user.id, 'cover_letter', None)

        assert service.cleanup_expired_restrictions() == 1

        db_session.expire_all()
        assert expired.is_active is False
        assert current.is_active is True
        assert indefinite.is_active is True

    def test_cleanup_is_idempotent(self, service, db_session, user):
        make_restriction(db_session, user.id, 'cover_letter', START_TIME - timedelta(hours=1))

        assert service.cleanup_expired_restrictions() == 1
        assert service.cleanup_expired_restrictions() == 0


class TestUserFeatureReset:

    def test_reset_is_scoped_to_user_and_feature(self, service, db_session, user, other_user):
        make_record(db_session, user.id, 'supporting_info', TODAY, daily=8, weekly=8, monthly=8)
        make_record(db_session, user.id, 'cover_letter', TODAY, daily=4, weekly=4, monthly=4)
        make_record(db_session, other_user.id, 'supporting_info', TODAY, daily=6, weekly=6, monthly=6)
        target = make_restriction(db_session, user.id, 'supporting_info', START_TIME + timedelta(hours=6))
        same_user_other_feature = make_restriction(db_session, user.id, 'cover_letter', START_TIME + timedelta(hours=6))
        other_users = make_restriction(db_session, other_user.id, 'supporting_info', START_TIME + timedelta(hours=6))

        result = service.reset_user_feature_counters(user.id, 'supporting_info')

        assert result == {
            'user_id': user.id,
            'feature_type': 'supporting_info',
            'period': 'all',
            'record_reset': True,
            'restrictions_lifted': 1,
        }
        assert counts(db_session) == sorted([
            (user.id, 'supporting_info', 0, 0, 0),
            (user.id, 'cover_letter', 4, 4, 4),
            (other_user.id, 'supporting_info', 6, 6, 6),
        ])
        assert target.is_active is False
        assert same_user_other_feature.is_active is True
        assert other_users.is_active is True

    def test_reset_single_period(self, service, db_session, user):
        make_record(db_session, user.id, 'supporting_info', TODAY, daily=8, weekly=10, monthly=12)

        service.reset_user_feature_counters(user.id, 'supporting_info', period='daily')

        assert counts(db_session) == [(user.id, 'supporting_info', 0, 10, 12)]

    def test_reset_without_record_still_lifts_restrictions(self, service, db_session, user):
        make_restriction(db_session, user.id, 'qa_generator', None)

        result = service.reset_user_feature_counters(user.id, 'qa_generator')

        assert result['record_reset'] is False
        assert result['restrictions_lifted'] == 1
        assert db_session.query(UserRestriction).filter(UserRestriction.is_active.is_(True)).count() == 0

    def test_invalid_arguments(self, service, user):
        with pytest.raises(UnknownFeature):
            service.reset_user_feature_counters(user.id, 'essay_writer')
        with pytest.raises(ValueError):
            service.reset_user_feature_counters(user.id, 'cover_letter', period='yearly')


def test_prune_usage_events(service, db_session, user):
    for age_hours in (1, 23, 25, 48):
        db_session.add(UsageEvent(
            user_id=user.id,
            feature_type='cover_letter',
            created_at=START_TIME - timedelta(hours=age_hours)
        ))
    db_session.commit()

    assert service.prune_usage_events(max_age_hours=24) == 2
    assert db_session.query(UsageEvent).count() == 2


class TestResetSchedule:

    def test_midweek(self):
        schedule = get_reset_schedule(START_TIME)

        assert schedule['next_daily'] == datetime(2025, 3, 13, tzinfo=timezone.utc)
        assert schedule['next_weekly'] == datetime(2025, 3, 17, tzinfo=timezone.utc)
        assert schedule['next_monthly'] == datetime(2025, 4, 1, tzinfo=timezone.utc)

    def test_on_a_monday_next_weekly_reset_is_a_week_away(self):
        schedule = get_reset_schedule(datetime(2025, 3, 17, 10, 0, tzinfo=timezone.utc))

        assert schedule['next_weekly'] == datetime(2025, 3, 24, tzinfo=timezone.utc)

    def test_december_rolls_into_next_year(self):
        schedule = get_reset_schedule(datetime(2025, 12, 31, 23, 59, tzinfo=timezone.utc))

        assert schedule['next_daily'] == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert schedule['next_monthly'] == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_service_uses_its_clock(self, service):
        assert service.get_reset_schedule()['next_daily'] == datetime(2025, 3, 13, tzinfo=timezone.utc)
