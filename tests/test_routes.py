from __future__ import annotations
from datetime import timedelta
import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient
from fitbet.main import app
from fitbet.config import settings
from fitbet.db import get_session
from fitbet.auth_deps import get_notifier, get_now, get_session_factory
from fitbet.models.status import ChallengeStatus, WindowStatus
from fitbet.services.habits import seed_templates
from fitbet.services.notifier import SafeNotifier
from conftest import NOW

ONBOARDING = {"track": "cut", "start_weight": 90, "start_waist": 100, "height": 180, "target_weight": 80, "target_waist": 90}


def as_user(user_id: int) -> dict:
    return {"X-Telegram-User-Id": str(user_id)}


@pytest_asyncio.fixture
async def ac(session_factory, notifier):
    async def _session():
        async with session_factory() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: SafeNotifier(notifier)
    app.dependency_overrides[get_now] = lambda: NOW
    async with AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


async def _create(ac, creator=1, chat_id=-100) -> dict:
    r = await ac.post("/challenges", headers=as_user(creator), json={
        "chat_id": chat_id, "chat_title": "Gym", "duration": 6,
        "stake_amount": 100, "discipline_threshold": 0.8, "max_skips": 1,
    })
    assert r.status_code == 201, r.text
    return r.json()


@pytest.mark.asyncio
async def test_full_enrollment_flow_activates_challenge(ac, notifier):
    ch = await _create(ac)
    assert ch["status"] == "draft" and ch["participants"] == []

    pids = {}
    for uid, name in ((1, "ann"), (2, "bob")):
        r = await ac.post(f"/challenges/{ch['id']}/join", headers=as_user(uid), json={"username": name})
        assert r.status_code == 201, r.text
        pids[uid] = r.json()["id"]
        r = await ac.post(f"/participants/{pids[uid]}/onboarding", headers=as_user(uid), json=ONBOARDING)
        assert r.status_code == 200 and r.json()["status"] == "pending_payment"

    r = await ac.post(f"/challenges/{ch['id']}/election", headers=as_user(1))
    assert r.status_code == 201
    election_id = r.json()["id"]

    r = await ac.post(f"/elections/{election_id}/votes", headers=as_user(1), json={"candidate_id": 1})
    assert r.json() == {"election_id": election_id, "finalized": False, "winner_user_id": None}
    r = await ac.post(f"/elections/{election_id}/votes", headers=as_user(2), json={"candidate_id": 1})
    assert r.json()["finalized"] is True and r.json()["winner_user_id"] == 1

    # the holder's own stake needs no second confirmation
    r = await ac.post(f"/participants/{pids[1]}/mark-paid", headers=as_user(1))
    assert r.status_code == 200 and r.json()["status"] == "confirmed"
    r = await ac.post(f"/participants/{pids[2]}/mark-paid", headers=as_user(2))
    assert r.json()["status"] == "marked_paid"
    assert f"confirm_{pids[2]}" in notifier.actions_to(1)
    r = await ac.post(f"/participants/{pids[2]}/confirm", headers=as_user(1))
    assert r.status_code == 200 and r.json()["confirmed_by"] == 1

    status = (await ac.get(f"/challenges/{ch['id']}")).json()
    assert status["status"] == "active"
    assert status["bank_holder_id"] == 1
    assert status["started_at"] is not None and status["ends_at"] is not None
    assert {p["status"] for p in status["participants"]} == {"active"}
    assert status["windows"] and status["windows"][0]["window_number"] == 1

    mine = (await ac.get("/participants/me", headers=as_user(2))).json()
    assert [p["id"] for p in mine] == [pids[2]]


@pytest.mark.asyncio
async def test_engine_errors_map_to_http_status(ac):
    ch = await _create(ac)
    r = await ac.post(f"/challenges/{ch['id']}/join", headers=as_user(5), json={})
    assert r.status_code == 201

    assert (await ac.post(f"/challenges/{ch['id']}/join", headers=as_user(5), json={})).status_code == 409
    assert (await ac.get("/challenges/999")).status_code == 404
    assert (await ac.post("/challenges", headers=as_user(2), json={
        "chat_id": -100, "duration": 6, "stake_amount": 100, "discipline_threshold": 0.8, "max_skips": 1,
    })).status_code == 409
    r = await ac.post(f"/participants/{r.json()['id']}/onboarding", headers=as_user(5), json=dict(ONBOARDING, target_weight=95))
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_actor_header_is_required(ac):
    r = await ac.post("/challenges", json={"chat_id": -1, "duration": 1, "stake_amount": 1, "discipline_threshold": 1, "max_skips": 0})
    assert r.status_code == 401
    r = await ac.get("/participants/me", headers={"X-Telegram-User-Id": "abc"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_checkin_over_http(ac, session, factory):
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE)
    await factory.participant(ch, 3)
    w = await factory.window(ch, 1, NOW - timedelta(hours=1), NOW + timedelta(hours=1), status=WindowStatus.OPEN)

    r = await ac.post(f"/windows/{w.id}/request", headers=as_user(3))
    assert r.status_code == 200
    r = await ac.post(f"/windows/{w.id}/checkins", headers=as_user(3), json={"weight": 88.5, "waist": 97})
    assert r.status_code == 201 and r.json()["weight"] == 88.5
    r = await ac.post(f"/windows/{w.id}/checkins", headers=as_user(3), json={"weight": 88.5, "waist": 97})
    assert r.status_code == 409
    r = await ac.post(f"/windows/{w.id}/checkins", headers=as_user(4), json={"weight": 10, "waist": 97})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_tick_endpoint_reports_sweeps(ac):
    r = await ac.post("/system/tick")
    assert r.status_code == 200
    body = r.json()
    assert body["tick_at"] == NOW.isoformat()
    assert set(body["sweeps"]) == {
        "onboarding_timeouts", "election_timeouts", "open_windows",
        "reminders", "close_windows", "finalize_challenges", "habit_reminders",
    }


@pytest.mark.asyncio
async def test_tick_endpoint_refuses_while_scheduler_runs(ac, monkeypatch):
    monkeypatch.setattr(settings, "scheduler_enabled", True)
    r = await ac.post("/system/tick")
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_habit_tracking_flow(ac, session, factory):
    await seed_templates(session)
    ch = await factory.challenge(status=ChallengeStatus.ACTIVE, started_at=NOW - timedelta(days=1))
    p = await factory.participant(ch, 3)

    templates = (await ac.get("/habits/templates")).json()
    by_name = {t["name"]: t for t in templates}
    steps, water = by_name["8k steps"]["id"], by_name["2 L water"]["id"]

    r = await ac.put(f"/participants/{p.id}/commitments", headers=as_user(3), json={"template_ids": [steps]})
    assert r.status_code == 422
    r = await ac.put(f"/participants/{p.id}/commitments", headers=as_user(3), json={"template_ids": [steps, water]})
    assert r.status_code == 200 and [t["id"] for t in r.json()] == [steps, water]

    r = await ac.post(f"/participants/{p.id}/habits", headers=as_user(3), json={"template_id": steps, "date_key": "2026-01-10", "status": "done"})
    assert r.status_code == 200 and r.json()["status"] == "done"
    r = await ac.post(f"/participants/{p.id}/habits", headers=as_user(4), json={"template_id": steps, "date_key": "2026-01-10", "status": "done"})
    assert r.status_code == 409

    view = (await ac.get(f"/participants/{p.id}/habits", headers=as_user(3))).json()
    assert view["date_key"] == "2026-01-10"
    assert "1) 8k steps — ✅ today; total days 1/2" in view["text"]
    assert f"habit_skip_{p.id}_{water}_2026-01-10" in [a["action"] for a in view["actions"]]
