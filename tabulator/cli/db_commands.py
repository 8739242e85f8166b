"""
Database CLI Commands

init, verify-log
"""
import asyncio


class DbCommand:
    """Database CLI command handler."""

    def __init__(self, dry_run: bool = False):
        self.dry_run = dry_run

    def execute(self, args) -> int:
        if args.db_action == "init":
            return self._init()
        elif args.db_action == "verify-log":
            return self._verify_log(args.event)
        else:
            print("Error: Unknown db action")
            return 1

    def _init(self) -> int:
        from tabulator.database import DATABASE_URL

        print("=== Database Init ===")
        if self.dry_run:
            print(f"[DRY RUN] Would create tables on {DATABASE_URL}")
            return 0

        try:
            asyncio.run(self._async_init())
            print("✓ Tables created")
            return 0
        except Exception as e:
            print(f"Error: {e}")
            return 1

    async def _async_init(self) -> None:
        from tabulator.database import close_db, init_db

        try:
            await init_db()
        finally:
            await close_db()

    def _verify_log(self, event_id: str) -> int:
        print(f"=== Verify Event Log {event_id} ===")
        try:
            report = asyncio.run(self._async_verify(event_id))
        except Exception as e:
            print(f"Error: {e}")
            return 1

        print(f"  Events: {report['total_events']}")
        if report["valid"]:
            print("✓ Chain intact")
            return 0

        issue = report["issue"]
        print(f"✗ #{issue['event_sequence']}: {issue['issue']}")
        return 2

    async def _async_verify(self, event_id: str) -> dict:
        from tabulator.database import AsyncSessionLocal, close_db
        from tabulator.services.live_event_service import verify_event_chain

        try:
            async with AsyncSessionLocal() as session:
                return await verify_event_chain(event_id, session)
        finally:
            await close_db()
