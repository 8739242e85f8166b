"""
Live Tabulation View Test Suite
"""
import asyncio

import pytest

from tabulator.realtime.live_view import LiveTabulationView
from tabulator.services import score_ledger_service, session_state_service, tie_breaker_service
from tabulator.state_machines.session_phase import SessionPhase


async def wait_until(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


class TestRefresh:

    @pytest.mark.asyncio
    async def test_unknown_event_is_empty(self, session_factory, seeded):
        view = LiveTabulationView(session_factory, "missing")
        tabulation = await view.refresh()

        assert tabulation.sequence == 0
        assert tabulation.leaderboard == ()
        assert tabulation.phase == SessionPhase.IDLE

    @pytest.mark.asyncio
    async def test_follows_active_segment(self, session_factory, seeded):
        async with session_factory() as db:
            await session_state_service.start_session(db, seeded.event_id)
            await score_ledger_service.submit_draft(
                db, seeded.gown, "cand-3", "judge-1", {"crit-a": 5, "crit-b": 5}
            )

        view = LiveTabulationView(session_factory, seeded.event_id)
        tabulation = await view.refresh()

        assert tabulation.segment_id == seeded.gown
        assert tabulation.phase == SessionPhase.JUDGING
        assert tabulation.leaderboard[0].candidate_id == "cand-3"
        assert str(tabulation.leaderboard[0].composite) == "70.00"
        assert tabulation.to_dict()["session"]["active_candidate_id"] == "cand-1"

    @pytest.mark.asyncio
    async def test_pinned_segment(self, session_factory, seeded):
        async with session_factory() as db:
            await session_state_service.start_session(db, seeded.event_id)
            await score_ledger_service.submit_draft(db, seeded.talent, "cand-4", "judge-2", {"crit-c": 9})

        view = LiveTabulationView(session_factory, seeded.event_id, segment_id=seeded.talent)
        tabulation = await view.refresh()

        assert tabulation.segment_id == seeded.talent
        assert tabulation.leaderboard[0].candidate_id == "cand-4"

    @pytest.mark.asyncio
    async def test_current_is_memoized_per_sequence(self, session_factory, seeded):
        view = LiveTabulationView(session_factory, seeded.event_id, segment_id=seeded.gown)
        assert view.current() is None

        first = await view.refresh()
        assert view.current() is first

        async with session_factory() as db:
            await score_ledger_service.submit_draft(db, seeded.gown, "cand-1", "judge-1", {"crit-a": 1})
        second = await view.refresh()

        assert second is not first
        assert second.sequence == first.sequence + 1


class TestMessages:

    @pytest.mark.asyncio
    async def test_ignores_other_events_and_stale_sequences(self, session_factory, seeded):
        view = LiveTabulationView(session_factory, seeded.event_id)
        async with session_factory() as db:
            await session_state_service.set_paused(db, seeded.event_id, True)
        await view.refresh()
        assert view.last_sequence == 1

        assert await view.handle_message({"event_id": "event-2", "event_sequence": 9}) is None
        assert await view.handle_message({"event_id": seeded.event_id, "event_sequence": 1}) is None
        assert await view.handle_message({"event_id": seeded.event_id, "event_sequence": "x"}) is None

    @pytest.mark.asyncio
    async def test_newer_sequence_refreshes_and_notifies(self, session_factory, seeded):
        view = LiveTabulationView(session_factory, seeded.event_id)
        await view.refresh()
        seen = []
        view.add_listener(seen.append)

        async with session_factory() as db:
            await tie_breaker_service.start_tie_breaker(db, seeded.event_id, ["cand-1", "cand-2"])

        tabulation = await view.handle_message({"event_id": seeded.event_id, "event_sequence": 1})

        assert tabulation.phase == SessionPhase.TIE_BREAK
        assert seen == [tabulation]

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_stop_others(self, session_factory, seeded):
        view = LiveTabulationView(session_factory, seeded.event_id)
        seen = []

        def broken(_):
            raise RuntimeError("listener bug")

        async def async_listener(tabulation):
            seen.append(tabulation.sequence)

        view.add_listener(broken)
        unsubscribe = view.add_listener(async_listener)

        async with session_factory() as db:
            await session_state_service.set_paused(db, seeded.event_id, True)
        await view.handle_message({"event_id": seeded.event_id, "event_sequence": 1})
        assert seen == [1]

        unsubscribe()
        async with session_factory() as db:
            await session_state_service.set_paused(db, seeded.event_id, False)
        await view.handle_message({"event_id": seeded.event_id, "event_sequence": 2})
        assert seen == [1]


class TestRun:

    @pytest.mark.asyncio
    async def test_run_tracks_published_changes(self, session_factory, seeded, adapter):
        view = LiveTabulationView(session_factory, seeded.event_id, segment_id=seeded.gown)
        seen = []
        view.add_listener(seen.append)

        task = asyncio.create_task(view.run(adapter))
        await wait_until(lambda: len(seen) >= 1)
        assert seen[0].sequence == 0

        async with session_factory() as db:
            await score_ledger_service.submit_draft(
                db, seeded.gown, "cand-2", "judge-1", {"crit-a": 10, "crit-b": 5}, adapter=adapter
            )
            await score_ledger_service.submit_draft(
                db, seeded.gown, "cand-3", "judge-1", {"crit-a": 10, "crit-b": 5}, adapter=adapter
            )

        await wait_until(lambda: view.last_sequence == 2)
        latest = view.current()
        assert [e.rank for e in latest.leaderboard[:2]] == [1, 1]
        assert latest.tie_groups[0].candidate_ids == ["cand-2", "cand-3"]

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
