"""HTTP tests for the admin usage routes"""

from datetime import timedelta

from app.models import UsageAppeal, UsageRecord, UserRestriction
from app.utils.time_utils import usage_date_key, utcnow
from tests.conftest import auth_headers, make_record, make_restriction


def test_admin_routes_require_admin(client, user):
    response = client.get("/api/admin/usage-overview", headers=auth_headers(user))

    assert response.status_code == 403


def test_usage_overview(client, db_session, user, admin_user):
    make_record(db_session, user.id, 'cover_letter', usage_date_key(utcnow()), daily=3, weekly=4, monthly=5)

    response = client.get("/api/admin/usage-overview", headers=auth_headers(admin_user))

    assert response.status_code == 200
    body = response.json()
    assert body["total_users"] == 2
    entry = next(u for u in body["users"] if u["user_id"] == user.id)
    assert entry["usage"]["cover_letter"]["daily"] == 3
    assert entry["usage"]["cover_letter"]["limits"] == {"daily": 8, "weekly": 15, "monthly": 45}


def test_user_usage_details(client, db_session, user, admin_user):
    now = utcnow()
    make_record(db_session, user.id, 'supporting_info', usage_date_key(now), daily=8, weekly=8, monthly=8)
    make_restriction(db_session, user.id, 'supporting_info', now + timedelta(hours=6), now)

    response = client.get(f"/api/admin/usage/user/{user.id}", headers=auth_headers(admin_user))

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == "applicant@example.com"
    assert [r["daily_count"] for r in body["usage_history"]] == [8]
    assert len(body["active_restrictions"]) == 1


def test_user_usage_details_unknown_user(client, admin_user):
    response = client.get("/api/admin/usage/user/missing", headers=auth_headers(admin_user))

    assert response.status_code == 404


def test_reset_user_usage(client, db_session, user, admin_user):
    now = utcnow()
    make_record(db_session, user.id, 'supporting_info', usage_date_key(now), daily=8, weekly=8, monthly=8)
    make_restriction(db_session, user.id, 'supporting_info', now + timedelta(hours=6), now)

    response = client.post(
        "/api/admin/usage/reset",
        json={"user_id": user.id, "feature_type": "supporting_info"},
        headers=auth_headers(admin_user)
    )

    assert response.status_code == 200
    body = response.json()
    assert body["period"] == "all"
    assert body["record_reset"] is True
    assert body["restrictions_lifted"] == 1
    db_session.expire_all()
    assert db_session.query(UsageRecord).one().daily_count == 0
    assert db_session.query(UserRestriction).one().is_active is False


def test_reset_user_usage_validation(client, user, admin_user):
    headers = auth_headers(admin_user)

    bad_period = client.post(
        "/api/admin/usage/reset",
        json={"user_id": user.id, "feature_type": "supporting_info", "period": "yearly"},
        headers=headers
    )
    bad_feature = client.post(
        "/api/admin/usage/reset",
        json={"user_id": user.id, "feature_type": "essay_writer"},
        headers=headers
    )

    assert bad_period.status_code == 422
    assert bad_feature.status_code == 422


def test_manual_batch_reset(client, db_session, user, admin_user):
    make_record(db_session, user.id, 'cover_letter', usage_date_key(utcnow()), daily=3, weekly=4, monthly=5)

    response = client.post("/api/admin/reset/weekly", headers=auth_headers(admin_user))

    assert response.status_code == 200
    assert response.json() == {
        "message": "Weekly usage counters reset successfully",
        "job": "weekly",
        "affected": 1,
    }
    db_session.expire_all()
    assert db_session.query(UsageRecord).one().weekly_count == 0


def test_manual_cleanup(client, db_session, user, admin_user):
    now = utcnow()
    make_restriction(db_session, user.id, 'qa_generator', now - timedelta(minutes=5), now - timedelta(hours=6))

    response = client.post("/api/admin/reset/cleanup", headers=auth_headers(admin_user))

    assert response.json()["affected"] == 1


def test_unknown_batch_reset(client, admin_user):
    response = client.post("/api/admin/reset/yearly", headers=auth_headers(admin_user))

    assert response.status_code == 404


def test_reset_schedule(client, admin_user):
    response = client.get("/api/admin/reset/schedule", headers=auth_headers(admin_user))

    assert response.status_code == 200
    body = response.json()
    assert body["schedule"]["weekly"] == "Every Monday at 00:00 UTC"
    assert body["scheduler"]["initialized"] is False


def test_review_appeal(client, db_session, user, admin_user):
    now = utcnow()
    restriction = make_restriction(db_session, user.id, 'supporting_info', now + timedelta(hours=6), now)
    appeal = UsageAppeal(user_id=user.id, restriction_id=restriction.id,
                         appeal_reason="Applying to several trusts this week.")
    db_session.add(appeal)
    db_session.commit()
    headers = auth_headers(admin_user)

    pending = client.get("/api/admin/usage/appeals", headers=headers)
    assert [a["id"] for a in pending.json()] == [appeal.id]

    response = client.post(
        f"/api/admin/usage/appeals/{appeal.id}/review",
        json={"approve": True, "response": "Restriction lifted"},
        headers=headers
    )

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    db_session.expire_all()
    assert db_session.query(UserRestriction).one().is_active is False

    again = client.post(
        f"/api/admin/usage/appeals/{appeal.id}/review",
        json={"approve": False},
        headers=headers
    )
    assert again.status_code == 400
