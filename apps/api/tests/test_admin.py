"""Tests for the admin endpoints: users, invites, registration failures, prompts, quality."""

from datetime import timedelta

import pytest

from app.core.config import settings
from app.db.enums import JobType, QualityFlagType, RegistrationFailureReason
from app.db.models import (
    AnalysisQualityFlag,
    ConversationAnalysis,
    Job,
    Prompt,
    RegistrationFailure,
    Transcript,
    User,
    UserInvite,
)
from app.services import prompt_service, registration_monitor_service
from app.utils.time import utcnow


# =============================================================================
# Access control
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path",
    ["/admin/users", "/admin/invites", "/admin/registration-failures", "/admin/prompts", "/admin/quality/flags"],
)
async def test_sales_user_is_forbidden(authed_client, path):
    res = await authed_client.get(path)
    assert res.status_code == 403


@pytest.mark.asyncio
async def test_admin_requires_session(client):
    res = await client.get("/admin/users")
    assert res.status_code == 401


# =============================================================================
# Users
# =============================================================================

@pytest.mark.asyncio
async def test_list_users(admin_client, test_user):
    res = await admin_client.get("/admin/users")
    assert res.status_code == 200
    data = res.json()
    assert data["total"] == 2
    assert {u["display_name"] for u in data["items"]} == {"Sam Seller", "Ada Admin"}


@pytest.mark.asyncio
async def test_change_role_revokes_sessions(admin_client, db, test_user):
    version = test_user.token_version

    res = await admin_client.patch(f"/admin/users/{test_user.id}/role", json={"role": "admin"})
    assert res.status_code == 200, res.text
    assert res.json()["role"] == "admin"
    db.refresh(test_user)
    assert test_user.token_version == version + 1


@pytest.mark.asyncio
async def test_admin_cannot_change_own_role(admin_client, test_admin):
    res = await admin_client.patch(f"/admin/users/{test_admin.id}/role", json={"role": "sales_user"})
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_deactivate_and_enable(admin_client, db, test_user):
    res = await admin_client.post(f"/admin/users/{test_user.id}/deactivate")
    assert res.status_code == 200
    assert res.json()["is_active"] is False

    res = await admin_client.get("/admin/users", params={"include_inactive": False})
    assert res.json()["total"] == 1

    res = await admin_client.post(f"/admin/users/{test_user.id}/enable")
    assert res.json()["is_active"] is True


@pytest.mark.asyncio
async def test_deactivated_user_loses_access(admin_client, authed_client, test_user):
    await admin_client.post(f"/admin/users/{test_user.id}/deactivate")

    res = await authed_client.get("/auth/me")
    assert res.status_code == 401


@pytest.mark.asyncio
async def test_admin_cannot_deactivate_self(admin_client, test_admin):
    res = await admin_client.post(f"/admin/users/{test_admin.id}/deactivate")
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_delete_user_removes_owned_data(admin_client, db, test_user):
    db.add(
        Transcript(
            user_id=test_user.id,
            title="Call",
            participants=[],
            duration_minutes=5,
            raw_text="hi",
        )
    )
    db.commit()
    user_id = str(test_user.id)

    res = await admin_client.post("/admin/users/delete", json={"user_id": user_id})
    assert res.status_code == 200, res.text
    assert res.json()["deleted"][user_id]["transcripts"] == 1

    db.expire_all()
    assert db.query(User).count() == 1
    assert db.query(Transcript).count() == 0


@pytest.mark.asyncio
async def test_delete_users_guards(admin_client, test_admin):
    res = await admin_client.post("/admin/users/delete", json={"user_ids": [str(test_admin.id)]})
    assert res.status_code == 409

    res = await admin_client.post(
        "/admin/users/delete", json={"user_id": "00000000-0000-0000-0000-000000000001"}
    )
    assert res.status_code == 404

    res = await admin_client.post("/admin/users/delete", json={})
    assert res.status_code == 422


# =============================================================================
# Invites
# =============================================================================

@pytest.mark.asyncio
async def test_create_invite_queues_email(admin_client, db):
    res = await admin_client.post("/admin/invites", json={"email": "New.Rep@Example.com"})
    assert res.status_code == 201, res.text
    invite = res.json()
    assert invite["email"] == "new.rep@example.com"
    assert invite["role"] == "sales_user"
    assert invite["status"] == "pending"

    job = db.query(Job).filter(Job.job_type == JobType.SEND_EMAIL.value).one()
    assert job.payload["email_type"] == "invite"
    assert job.payload["to"] == "new.rep@example.com"

    res = await admin_client.post("/admin/invites", json={"email": "new.rep@example.com"})
    assert res.status_code == 409

    res = await admin_client.get("/admin/invites")
    assert len(res.json()) == 1


@pytest.mark.asyncio
async def test_invite_for_existing_user_is_409(admin_client, test_user):
    res = await admin_client.post("/admin/invites", json={"email": test_user.email})
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_revoke_invite(admin_client, db):
    res = await admin_client.post("/admin/invites", json={"email": "gone@example.com", "role": "admin"})
    invite_id = res.json()["id"]

    res = await admin_client.delete(f"/admin/invites/{invite_id}")
    assert res.status_code == 204
    assert db.query(UserInvite).count() == 0

    res = await admin_client.delete(f"/admin/invites/{invite_id}")
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_accepted_invite_cannot_be_revoked(admin_client, db):
    invite = UserInvite(
        email="joined@example.com",
        role="sales_user",
        expires_at=utcnow() + timedelta(days=7),
        accepted_at=utcnow(),
    )
    db.add(invite)
    db.commit()

    res = await admin_client.delete(f"/admin/invites/{invite.id}")
    assert res.status_code == 409


# =============================================================================
# Registration failures
# =============================================================================

def _failure(db, email="stranger@example.com", minutes_ago=0) -> RegistrationFailure:
    failure = registration_monitor_service.record_failure(
        db,
        email=email,
        reason=RegistrationFailureReason.NOT_INVITED,
        message="No invitation found",
    )
    if minutes_ago:
        failure.attempted_at = utcnow() - timedelta(minutes=minutes_ago)
        db.commit()
    return failure


def test_monitor_alerts_recent_failures_once(db):
    _failure(db, "a@example.com")
    _failure(db, "b@example.com", minutes_ago=10)

    result = registration_monitor_service.run_monitor(db)

    assert result == {"success": True, "failures_found": 2, "alert_sent": True}
    job = db.query(Job).filter(Job.job_type == JobType.SEND_EMAIL.value).one()
    assert job.payload["to"] == settings.ADMIN_ALERT_EMAIL
    assert job.payload["email_type"] == "registration-failure"
    assert all(f.alert_sent for f in db.query(RegistrationFailure).all())

    assert registration_monitor_service.run_monitor(db) == {
        "success": True,
        "failures_found": 0,
        "alert_sent": False,
    }


def test_monitor_ignores_old_failures(db):
    old = _failure(db, minutes_ago=45)

    result = registration_monitor_service.run_monitor(db)

    assert result["failures_found"] == 0
    assert db.query(Job).count() == 0
    db.refresh(old)
    assert old.alert_sent is False


@pytest.mark.asyncio
async def test_list_and_resolve_failures(admin_client, db):
    failure = _failure(db)
    _failure(db, "other@example.com")

    res = await admin_client.get("/admin/registration-failures")
    assert res.json()["total"] == 2

    res = await admin_client.post(
        f"/admin/registration-failures/{failure.id}/resolve",
        json={"resolution_method": "invited"},
    )
    assert res.status_code == 200
    assert res.json()["resolved"] is True
    assert res.json()["resolution_method"] == "invited"

    res = await admin_client.get("/admin/registration-failures", params={"unresolved_only": True})
    assert res.json()["total"] == 1


@pytest.mark.asyncio
async def test_resolve_unknown_failure_is_404(admin_client):
    res = await admin_client.post(
        "/admin/registration-failures/00000000-0000-0000-0000-000000000001/resolve",
        json={},
    )
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_test_email_dry_run(admin_client, monkeypatch):
    monkeypatch.setattr(settings, "RESEND_API_KEY", "")

    res = await admin_client.post("/admin/emails/test", json={"to": "ops@example.com"})

    assert res.status_code == 200
    assert res.json() == {"success": True, "message_id": None, "dry_run": True}


# =============================================================================
# Prompts
# =============================================================================

@pytest.mark.asyncio
async def test_create_and_activate_prompts(admin_client, db):
    default = prompt_service.ensure_default_prompt(db)

    res = await admin_client.post(
        "/admin/prompts",
        json={"name": "Shorter", "prompt_text": "Summarize: {{conversation}}"},
    )
    assert res.status_code == 201, res.text
    draft = res.json()
    assert draft["version_number"] == default.version_number + 1
    assert draft["is_active"] is False
    assert prompt_service.get_active_prompt(db).id == default.id

    res = await admin_client.post(f"/admin/prompts/{draft['id']}/activate")
    assert res.status_code == 200
    assert res.json()["is_active"] is True

    db.expire_all()
    assert [p.name for p in db.query(Prompt).filter(Prompt.is_active.is_(True))] == ["Shorter"]

    res = await admin_client.get("/admin/prompts")
    assert [p["version_number"] for p in res.json()] == [2, 1]


@pytest.mark.asyncio
async def test_prompt_without_placeholder_is_422(admin_client):
    res = await admin_client.post("/admin/prompts", json={"name": "Broken", "prompt_text": "No slot"})
    assert res.status_code == 422


def test_create_prompt_with_activate(db):
    prompt_service.ensure_default_prompt(db)

    prompt = prompt_service.create_prompt(
        db, name="Live", prompt_text="{{conversation}}", activate=True
    )

    assert prompt_service.get_active_prompt(db).id == prompt.id
    assert db.query(Prompt).filter(Prompt.is_active.is_(True)).count() == 1


# =============================================================================
# Quality flags
# =============================================================================

def _flagged_analysis(db, user, flag_types) -> ConversationAnalysis:
    transcript = Transcript(
        user_id=user.id,
        title="Call",
        participants=[],
        duration_minutes=5,
        raw_text="hi",
    )
    db.add(transcript)
    db.flush()
    analysis = ConversationAnalysis(transcript_id=transcript.id, user_id=user.id, heat_level="LOW")
    db.add(analysis)
    db.flush()
    for flag_type in flag_types:
        db.add(AnalysisQualityFlag(analysis_id=analysis.id, flag_type=flag_type.value, details={}))
    db.commit()
    return analysis


@pytest.mark.asyncio
async def test_list_and_resolve_quality_flags(admin_client, db, test_user, test_admin):
    _flagged_analysis(db, test_user, [QualityFlagType.FABRICATED_QUOTES, QualityFlagType.MISSING_FIELDS])

    res = await admin_client.get("/admin/quality/flags")
    assert res.json()["total"] == 2

    res = await admin_client.get("/admin/quality/flags", params={"flag_type": "fabricated_quotes"})
    [flag] = res.json()["items"]

    res = await admin_client.post(f"/admin/quality/flags/{flag['id']}/resolve")
    assert res.status_code == 200
    assert res.json()["resolved_by"] == str(test_admin.id)

    res = await admin_client.get("/admin/quality/flags")
    assert res.json()["total"] == 1

    res = await admin_client.get("/admin/quality/flags", params={"unresolved_only": False})
    assert res.json()["total"] == 2


@pytest.mark.asyncio
async def test_quality_stats(admin_client, db, test_user):
    _flagged_analysis(db, test_user, [QualityFlagType.FABRICATED_QUOTES])
    _flagged_analysis(db, test_user, [])

    res = await admin_client.get("/admin/quality/stats", params={"days": 30})
    assert res.status_code == 200
    stats = res.json()
    assert stats["days"] == 30
    assert stats["total_analyses"] == 2
    assert stats["flagged_analyses"] == 1
    assert stats["by_type"]["fabricated_quotes"] == {"total": 1, "unresolved": 1}
    assert stats["by_type"]["schema_invalid"] == {"total": 0, "unresolved": 0}
