"""
Results CLI Commands

Prints the current leaderboard of a segment, as a table or CSV.
"""
import asyncio


class ResultsCommand:
    """Results CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        try:
            entries, sequence = asyncio.run(self._async_leaderboard(args.event, args.segment))
        except Exception as e:
            print(f"Error: {e}")
            return 1

        if args.csv:
            from tabulator.services.export_service import export_leaderboard_csv
            print(export_leaderboard_csv(entries), end="")
            return 0

        print(f"=== Segment {args.segment} (log #{sequence}) ===")
        if not entries:
            print("No candidates found")
            return 0

        print(f"\n{'Rank':<6} {'No.':<5} {'Name':<32} {'Score':>8} {'Judges':>7}")
        print("-" * 62)
        for e in entries:
            print(f"{e.rank:<6} {e.number:<5} {e.name[:30]:<32} {e.composite:>8} {e.judge_count:>7}")
        return 0

    async def _async_leaderboard(self, event_id: str, segment_id: str):
        from tabulator.database import AsyncSessionLocal, close_db
        from tabulator.services.read_model_service import leaderboard_for, load_snapshot

        try:
            async with AsyncSessionLocal() as session:
                snapshot = await load_snapshot(session, event_id)
        finally:
            await close_db()
        return leaderboard_for(snapshot, segment_id), snapshot.sequence
