"""
API Contract Test Suite

Exercises the HTTP surface end to end against a real database, with the
application's process-wide collaborators replaced by per-test instances.
"""
import httpx
import pytest
import pytest_asyncio

from tabulator.database import get_db, get_session_factory
from tabulator.main import app
from tabulator.rbac import ROLE_ADMIN, ROLE_COMMITTEE, ROLE_JUDGE, create_access_token
from tabulator.realtime.draft_debouncer import DraftDebouncer, get_draft_debouncer
from tabulator.services.live_event_service import get_broadcast_adapter

EVENT = "event-1"
BASE = f"/api/events/{EVENT}"


def auth(role, subject_id=None, event_id=EVENT):
    return {"Authorization": f"Bearer {create_access_token(role, event_id, subject_id)}"}


ADMIN = auth(ROLE_ADMIN)
COMMITTEE = auth(ROLE_COMMITTEE, "member-1")
JUDGE_1 = auth(ROLE_JUDGE, "judge-1")
JUDGE_2 = auth(ROLE_JUDGE, "judge-2")


def draft_url(segment_id, candidate_id, action="draft"):
    return f"{BASE}/scorecard/segments/{segment_id}/candidates/{candidate_id}/{action}"


@pytest_asyncio.fixture
async def client(session_factory, seeded, adapter):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_draft_debouncer] = lambda: None
    app.dependency_overrides[get_broadcast_adapter] = lambda: adapter

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# =============================================================================
# Test: Identity and access
# =============================================================================

class TestAccess:

    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_missing_token(self, client):
        response = await client.get(f"{BASE}/session")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_REQUIRED"

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await client.get(f"{BASE}/session", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_INVALID"

    @pytest.mark.asyncio
    async def test_judge_cannot_drive_the_session(self, client):
        response = await client.post(f"{BASE}/control/session/start", headers=JUDGE_1)
        assert response.status_code == 403
        assert response.json()["code"] == "FORBIDDEN"

    @pytest.mark.asyncio
    async def test_committee_cannot_write_scores(self, client, seeded):
        response = await client.put(
            draft_url(seeded.gown, "cand-1"), json={"criteria_scores": {"crit-a": 1}}, headers=COMMITTEE
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_token_for_another_event(self, client):
        response = await client.get(f"{BASE}/session", headers=auth(ROLE_ADMIN, event_id="event-setup"))
        assert response.status_code == 403
        assert response.json()["code"] == "EVENT_MISMATCH"


# =============================================================================
# Test: Judging flow
# =============================================================================

class TestJudgingFlow:

    @pytest.mark.asyncio
    async def test_draft_lock_unlock_round_trip(self, client, seeded):
        response = await client.post(f"{BASE}/control/session/start", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["active_segment_id"] == seeded.gown
        assert response.json()["phase"] == "judging"

        response = await client.put(
            draft_url(seeded.gown, "cand-1"), json={"criteriaScores": {"crit-a": 8}}, headers=JUDGE_1
        )
        assert response.status_code == 202
        assert response.json()["debounce_ms"] == 0

        response = await client.post(draft_url(seeded.gown, "cand-1", "lock"), headers=JUDGE_1)
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INCOMPLETE_SCORECARD"
        assert body["details"]["missing_criteria"] == ["crit-b"]

        await client.put(
            draft_url(seeded.gown, "cand-1"),
            json={"criteria_scores": {"crit-a": 8, "crit-b": 4}, "notes": "graceful"},
            headers=JUDGE_1
        )
        response = await client.post(draft_url(seeded.gown, "cand-1", "lock"), headers=JUDGE_1)
        assert response.status_code == 200
        assert response.json()["locked"] is True
        assert response.json()["total"] == 12.0

        response = await client.post(
            f"{BASE}/scorecard/segments/{seeded.gown}/candidates/cand-1/unlock-request", headers=JUDGE_1
        )
        assert response.status_code == 201
        request_id = response.json()["id"]
        assert response.json()["status"] == "pending"

        session = (await client.get(f"{BASE}/session", headers=ADMIN)).json()
        assert [r["id"] for r in session["pending_unlock_requests"]] == [request_id]

        response = await client.post(
            f"{BASE}/control/unlock-requests/{request_id}/resolve", json={"approve": True}, headers=ADMIN
        )
        assert response.status_code == 200
        assert response.json()["status"] == "approved"

        own = (await client.get(
            f"{BASE}/scorecard/segments/{seeded.gown}/candidates/cand-1", headers=JUDGE_1
        )).json()
        assert own["locked"] is False
        assert own["notes"] == "graceful"

    @pytest.mark.asyncio
    async def test_own_score_is_null_before_first_draft(self, client, seeded):
        response = await client.get(
            f"{BASE}/scorecard/segments/{seeded.gown}/candidates/cand-2", headers=JUDGE_2
        )
        assert response.status_code == 200
        assert response.json() is None

    @pytest.mark.asyncio
    async def test_values_are_clamped_not_rejected(self, client, seeded):
        response = await client.put(
            draft_url(seeded.gown, "cand-1"),
            json={"criteria_scores": {"crit-a": 99, "crit-b": "oops"}},
            headers=JUDGE_1
        )
        assert response.status_code == 202

        own = (await client.get(
            f"{BASE}/scorecard/segments/{seeded.gown}/candidates/cand-1", headers=JUDGE_1
        )).json()
        assert own["criteria_scores"] == {"crit-a": 10.0, "crit-b": 0.0}

    @pytest.mark.asyncio
    async def test_unknown_candidate(self, client, seeded):
        response = await client.put(
            draft_url(seeded.gown, "ghost"), json={"criteria_scores": {}}, headers=JUDGE_1
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_event_not_active(self, client, seeded):
        response = await client.put(
            "/api/events/event-setup/scorecard/segments/seg-setup/candidates/cand-setup/draft",
            json={"criteria_scores": {"crit-setup": 5}},
            headers=auth(ROLE_JUDGE, "judge-setup", event_id="event-setup")
        )
        assert response.status_code == 409
        assert response.json()["code"] == "EVENT_NOT_ACTIVE"

    @pytest.mark.asyncio
    async def test_unlock_request_for_unlocked_score(self, client, seeded):
        response = await client.post(
            f"{BASE}/scorecard/segments/{seeded.gown}/candidates/cand-1/unlock-request", headers=JUDGE_1
        )
        assert response.status_code == 400
        assert response.json()["code"] == "SCORE_NOT_LOCKED"

    @pytest.mark.asyncio
    async def test_malformed_body(self, client):
        response = await client.put(f"{BASE}/control/session/pause", json={"paused": "maybe"}, headers=ADMIN)
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_start_reports_missing_precondition(self, client, session_factory, seeded):
        from tabulator.orm.event import Candidate

        async with session_factory() as db:
            for candidate_id in seeded.candidates:
                await db.delete(await db.get(Candidate, candidate_id))
            await db.commit()

        response = await client.post(f"{BASE}/control/session/start", headers=ADMIN)
        assert response.status_code == 400
        assert response.json()["details"]["precondition"] == "candidates"


class TestDebouncedDrafts:

    @pytest.mark.asyncio
    async def test_lock_flushes_pending_draft(self, client, session_factory, seeded, adapter):
        debouncer = DraftDebouncer(session_factory, delay_seconds=10, adapter_provider=lambda: adapter)
        app.dependency_overrides[get_draft_debouncer] = lambda: debouncer

        response = await client.put(
            draft_url(seeded.gown, "cand-3"), json={"criteria_scores": {"crit-a": 7, "crit-b": 3}}, headers=JUDGE_2
        )
        assert response.status_code == 202
        assert response.json()["debounce_ms"] > 0
        assert debouncer.has_pending((seeded.gown, "cand-3", "judge-2"))

        response = await client.post(draft_url(seeded.gown, "cand-3", "lock"), headers=JUDGE_2)

        assert response.status_code == 200
        assert response.json()["criteria_scores"] == {"crit-a": 7.0, "crit-b": 3.0}
        assert debouncer.pending_count == 0
        await debouncer.close()


# =============================================================================
# Test: Read model
# =============================================================================

class TestResults:

    async def _score(self, client, headers, segment_id, candidate_id, scores, lock=False):
        await client.put(draft_url(segment_id, candidate_id), json={"criteria_scores": scores}, headers=headers)
        if lock:
            await client.post(draft_url(segment_id, candidate_id, "lock"), headers=headers)

    @pytest.mark.asyncio
    async def test_leaderboard_and_tie_groups(self, client, seeded):
        await self._score(client, JUDGE_1, seeded.gown, "cand-1", {"crit-a": 8, "crit-b": 4}, lock=True)
        await self._score(client, JUDGE_2, seeded.gown, "cand-1", {"crit-a": 10, "crit-b": 5})
        await self._score(client, JUDGE_1, seeded.gown, "cand-2", {"crit-a": 9, "crit-b": 4.5})

        response = await client.get(f"{BASE}/segments/{seeded.gown}/leaderboard", headers=JUDGE_1)
        assert response.status_code == 200
        body = response.json()
        assert body["sequence"] == 4
        top = body["entries"][:2]
        assert [(e["candidate_id"], e["composite"], e["rank"]) for e in top] == [
            ("cand-1", 90.0, 1), ("cand-2", 90.0, 1)
        ]
        assert body["entries"][0]["judge_count"] == 2

        groups = (await client.get(f"{BASE}/segments/{seeded.gown}/tie-groups", headers=COMMITTEE)).json()
        assert groups["groups"][0] == {"rank": 1, "score": 90.0, "candidate_ids": ["cand-1", "cand-2"]}

    @pytest.mark.asyncio
    async def test_unknown_segment_is_empty(self, client):
        response = await client.get(f"{BASE}/segments/nope/leaderboard", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["entries"] == []

    @pytest.mark.asyncio
    async def test_judge_matrix_for_committee(self, client, seeded):
        await self._score(client, JUDGE_1, seeded.gown, "cand-1", {"crit-a": 8, "crit-b": 4}, lock=True)

        response = await client.get(
            f"{BASE}/segments/{seeded.gown}/candidates/cand-1/scores", headers=COMMITTEE
        )
        assert response.status_code == 200
        body = response.json()
        assert body["composite"] == 80.0
        rows = {row["judge_id"]: row for row in body["judges"]}
        assert rows["judge-1"]["locked"] is True
        assert rows["judge-1"]["weighted_subtotal"] == 80.0
        assert rows["judge-2"]["has_score"] is False

    @pytest.mark.asyncio
    async def test_judges_cannot_see_the_matrix(self, client, seeded):
        response = await client.get(
            f"{BASE}/segments/{seeded.gown}/candidates/cand-1/scores", headers=JUDGE_1
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_progress_grid(self, client, seeded):
        await self._score(client, JUDGE_1, seeded.gown, "cand-1", {"crit-a": 8, "crit-b": 4}, lock=True)
        await self._score(client, JUDGE_2, seeded.gown, "cand-1", {"crit-a": 2})

        body = (await client.get(f"{BASE}/segments/{seeded.gown}/progress", headers=ADMIN)).json()
        first = body["candidates"][0]
        assert first["candidate_id"] == "cand-1"
        assert first["judges"] == {"judge-1": "locked", "judge-2": "draft", "judge-3": "pending"}

    @pytest.mark.asyncio
    async def test_csv_export(self, client, seeded):
        await self._score(client, JUDGE_1, seeded.talent, "cand-2", {"crit-c": 9.5})

        response = await client.get(f"{BASE}/segments/{seeded.talent}/leaderboard.csv", headers=ADMIN)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert f"results_{seeded.talent}.csv" in response.headers["content-disposition"]
        lines = response.text.splitlines()
        assert lines[0] == "Rank,Number,Name,Total Score"
        assert lines[1] == "1,2,Candidate 2,9.50"
        assert len(lines) == 5

    @pytest.mark.asyncio
    async def test_event_log_verifies(self, client, seeded):
        await client.post(f"{BASE}/control/session/start", headers=ADMIN)
        await self._score(client, JUDGE_1, seeded.gown, "cand-1", {"crit-a": 1})

        report = (await client.get(f"{BASE}/event-log/verify", headers=ADMIN)).json()
        assert report["valid"] is True
        assert report["total_events"] == 2


class TestTieBreakerApi:

    @pytest.mark.asyncio
    async def test_round_through_the_api(self, client, seeded):
        response = await client.post(
            f"{BASE}/control/tie-breaker", json={"candidate_ids": ["cand-1"]}, headers=ADMIN
        )
        assert response.status_code == 400
        assert response.json()["code"] == "TIE_BREAKER_TOO_FEW_CANDIDATES"

        response = await client.post(
            f"{BASE}/control/tie-breaker", json={"candidate_ids": ["cand-1", "cand-2"]}, headers=ADMIN
        )
        assert response.json() == {"active": True, "candidate_ids": ["cand-1", "cand-2"]}

        session = (await client.get(f"{BASE}/session", headers=JUDGE_1)).json()
        assert session["phase"] == "tie_break"
        assert session["tie_breaker"]["candidate_ids"] == ["cand-1", "cand-2"]

        for headers, choice in ((JUDGE_1, "cand-2"), (JUDGE_2, "cand-2")):
            response = await client.post(
                f"{BASE}/scorecard/tie-breaker/vote", json={"candidate_id": choice}, headers=headers
            )
            assert response.status_code == 200

        response = await client.post(
            f"{BASE}/scorecard/tie-breaker/vote", json={"candidate_id": "cand-4"}, headers=JUDGE_1
        )
        assert response.json()["code"] == "INVALID_TIE_VOTE"

        tally = (await client.get(f"{BASE}/tie-breaker/tally", headers=COMMITTEE)).json()
        assert tally == {"active": True, "tally": {"cand-1": 0, "cand-2": 2}}

        response = await client.delete(f"{BASE}/control/tie-breaker", headers=ADMIN)
        assert response.json() == {"success": True, "final_tally": {"cand-1": 0, "cand-2": 2}}

        session = (await client.get(f"{BASE}/session", headers=ADMIN)).json()
        assert session["tie_breaker"] is None
        assert session["phase"] == "idle"
