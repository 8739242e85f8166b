"""
Seed CLI Commands

Creates a ready-to-judge demo event and prints bearer tokens for each
participant, so the API can be exercised without the roster editors.
"""
import asyncio
from datetime import date
from typing import Dict, List


DEMO_SEGMENTS = [
    {
        "name": "Evening Gown",
        "weight": 60.0,
        "criteria": [
            {"name": "Poise", "max_score": 10, "weight": 60},
            {"name": "Elegance", "max_score": 5, "weight": 40},
        ],
    },
    {
        "name": "Question and Answer",
        "weight": 40.0,
        "criteria": [
            {"name": "Content", "max_score": 50, "weight": None},
            {"name": "Delivery", "max_score": 50, "weight": None},
        ],
    },
]


class SeedCommand:
    """Seed CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        if args.seed_action == "demo":
            return self._demo(args)
        print("Error: Unknown seed action")
        return 1

    def _demo(self, args) -> int:
        print(f"=== Seed Demo Event '{args.name}' ===")

        if args.judges < 1 or args.candidates < 2:
            print("Error: need at least 1 judge and 2 candidates")
            return 1

        if self.dry_run:
            print(f"[DRY RUN] Would create {len(DEMO_SEGMENTS)} segments, "
                  f"{args.judges} judges and {args.candidates} candidates")
            return 0

        try:
            seeded = asyncio.run(self._async_demo(args.name, args.judges, args.candidates))
        except Exception as e:
            print(f"Error: {e}")
            return 1

        self._print_seeded(seeded)
        return 0

    async def _async_demo(self, name: str, judge_count: int, candidate_count: int) -> Dict:
        from tabulator.database import AsyncSessionLocal, close_db, init_db
        from tabulator.orm.event import (
            Candidate, CommitteeMember, Criterion, Event, EventStatus, Judge, Segment
        )

        await init_db()
        try:
            async with AsyncSessionLocal() as session:
                event = Event(name=name, status=EventStatus.ACTIVE, event_date=date.today())
                session.add(event)
                await session.flush()

                segments: List[Segment] = []
                for order, segment_def in enumerate(DEMO_SEGMENTS):
                    segment = Segment(
                        event_id=event.id,
                        name=segment_def["name"],
                        display_order=order,
                        weight=segment_def["weight"],
                    )
                    segment.criteria = [
                        Criterion(
                            name=c["name"],
                            max_score=c["max_score"],
                            weight=c["weight"],
                            display_order=i,
                        )
                        for i, c in enumerate(segment_def["criteria"])
                    ]
                    session.add(segment)
                    segments.append(segment)

                judges = [
                    Judge(event_id=event.id, name=f"Judge {i + 1}")
                    for i in range(judge_count)
                ]
                candidates = [
                    Candidate(event_id=event.id, number=i + 1, name=f"Candidate {i + 1}")
                    for i in range(candidate_count)
                ]
                member = CommitteeMember(event_id=event.id, name="Committee")
                session.add_all(judges + candidates + [member])
                await session.commit()

                return {
                    "event_id": event.id,
                    "segments": [(s.id, s.name) for s in segments],
                    "judges": [(j.id, j.name) for j in judges],
                    "candidates": [(c.id, c.number, c.name) for c in candidates],
                    "committee_id": member.id,
                }
        finally:
            await close_db()

    def _print_seeded(self, seeded: Dict) -> None:
        from tabulator.rbac import ROLE_ADMIN, ROLE_COMMITTEE, ROLE_JUDGE, create_access_token

        event_id = seeded["event_id"]
        print(f"✓ Event {event_id}")

        print("\nSegments:")
        for segment_id, name in seeded["segments"]:
            print(f"  {segment_id}  {name}")

        print("\nCandidates:")
        for candidate_id, number, name in seeded["candidates"]:
            print(f"  #{number:<3} {candidate_id}  {name}")

        print("\nTokens:")
        print(f"  admin      {create_access_token(ROLE_ADMIN, event_id)}")
        print(f"  committee  {create_access_token(ROLE_COMMITTEE, event_id, seeded['committee_id'])}")
        for judge_id, name in seeded["judges"]:
            print(f"  {name:<10} {create_access_token(ROLE_JUDGE, event_id, judge_id)}")
