"""
Shared fixtures: a file-backed SQLite database per test and a seeded event.

Seeded roster (event "event-1", active):
- segment "seg-gown" (order 0): crit-a max 10 weight 60, crit-b max 5 weight 40
- segment "seg-talent" (order 1): crit-c max 10, unweighted
- judges judge-1..judge-3, candidates cand-1..cand-4 numbered 1..4
- committee member "member-1"

"event-setup" is a second event still in setup, with its own candidate.
"""
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tabulator.orm import (
    Base, Candidate, CommitteeMember, Criterion, Event, EventStatus, Judge, Segment
)
from tabulator.realtime import connection_manager, draft_debouncer
from tabulator.realtime.in_memory_adapter import InMemoryAdapter
from tabulator.services import live_event_service

EVENT_ID = "event-1"
SETUP_EVENT_ID = "event-setup"
GOWN = "seg-gown"
TALENT = "seg-talent"
JUDGES = ["judge-1", "judge-2", "judge-3"]
CANDIDATES = ["cand-1", "cand-2", "cand-3", "cand-4"]


@pytest.fixture(autouse=True)
def reset_globals():
    """Process-wide registries must not leak between tests (each test has its own loop)."""
    live_event_service._event_locks.clear()
    live_event_service.set_broadcast_adapter(None)
    draft_debouncer.set_draft_debouncer(None)
    connection_manager.set_connection_manager(None)
    yield
    live_event_service._event_locks.clear()
    live_event_service.set_broadcast_adapter(None)
    draft_debouncer.set_draft_debouncer(None)
    connection_manager.set_connection_manager(None)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'tabulator_test.db'}",
        connect_args={"timeout": 30.0}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def adapter():
    adapter = InMemoryAdapter()
    yield adapter
    await adapter.close()


@pytest_asyncio.fixture
async def seeded(session_factory):
    async with session_factory() as session:
        session.add(Event(id=EVENT_ID, name="Miss Demo 2026", status=EventStatus.ACTIVE))
        session.add(Event(id=SETUP_EVENT_ID, name="Not Yet Live", status=EventStatus.SETUP))
        await session.flush()

        gown = Segment(id=GOWN, event_id=EVENT_ID, name="Evening Gown", display_order=0, weight=60.0)
        gown.criteria = [
            Criterion(id="crit-a", name="Poise", max_score=10, weight=60, display_order=0),
            Criterion(id="crit-b", name="Elegance", max_score=5, weight=40, display_order=1),
        ]
        talent = Segment(id=TALENT, event_id=EVENT_ID, name="Talent", display_order=1, weight=40.0)
        talent.criteria = [
            Criterion(id="crit-c", name="Execution", max_score=10, weight=None, display_order=0),
        ]
        session.add_all([gown, talent])

        for i, judge_id in enumerate(JUDGES):
            session.add(Judge(id=judge_id, event_id=EVENT_ID, name=f"Judge {i + 1}"))
        for i, candidate_id in enumerate(CANDIDATES):
            session.add(Candidate(id=candidate_id, event_id=EVENT_ID, number=i + 1, name=f"Candidate {i + 1}"))
        session.add(CommitteeMember(id="member-1", event_id=EVENT_ID, name="Chair"))

        setup_segment = Segment(id="seg-setup", event_id=SETUP_EVENT_ID, name="Preliminary", display_order=0)
        setup_segment.criteria = [
            Criterion(id="crit-setup", name="Overall", max_score=10, display_order=0),
        ]
        session.add(setup_segment)
        session.add(Judge(id="judge-setup", event_id=SETUP_EVENT_ID, name="Setup Judge"))
        session.add(Candidate(id="cand-setup", event_id=SETUP_EVENT_ID, number=1, name="Setup Candidate"))

        await session.commit()

    return SimpleNamespace(
        event_id=EVENT_ID,
        setup_event_id=SETUP_EVENT_ID,
        gown=GOWN,
        talent=TALENT,
        judges=JUDGES,
        candidates=CANDIDATES,
        member_id="member-1",
    )

