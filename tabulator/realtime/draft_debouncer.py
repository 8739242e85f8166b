"""
Draft Debouncer

Live typing produces a draft per keystroke. Drafts are held per
(segment, candidate, judge) and written once the key has been quiet for the
debounce period, so only the latest payload reaches the ledger.

The writer never blocks on the write. A failed background write is logged;
the judge's next change schedules a new one.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from tabulator.config.settings import settings
from tabulator.orm.score import JudgeScore
from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.services import score_ledger_service
from tabulator.services.live_event_service import get_broadcast_adapter

logger = logging.getLogger(__name__)

DraftKey = Tuple[str, str, str]


class DraftDebouncer:
    """
    Per-key trailing-edge debounce of draft writes.

    Keys are (segment_id, candidate_id, judge_id). Each key has at most one
    pending payload and one timer.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        delay_seconds: Optional[float] = None,
        adapter_provider: Callable[[], Optional[BroadcastAdapter]] = get_broadcast_adapter
    ):
        self.session_factory = session_factory
        self.delay_seconds = settings.draft_debounce_seconds if delay_seconds is None else delay_seconds
        self._adapter_provider = adapter_provider
        self._pending: Dict[DraftKey, Tuple[Dict[str, Any], Optional[str]]] = {}
        self._timers: Dict[DraftKey, asyncio.Task] = {}
        self._writing: Set[asyncio.Task] = set()
        self._key_locks: Dict[DraftKey, asyncio.Lock] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def has_pending(self, key: DraftKey) -> bool:
        return key in self._pending

    def submit(
        self,
        key: DraftKey,
        raw_scores: Optional[Mapping[str, Any]],
        notes: Optional[str] = None
    ) -> None:
        """
        Replace the pending draft for the key and restart its quiet timer.

        notes=None keeps notes from an earlier pending draft.
        """
        previous = self._pending.get(key)
        if notes is None and previous is not None:
            notes = previous[1]
        self._pending[key] = (dict(raw_scores or {}), notes)

        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._timers[key] = asyncio.create_task(self._flush_later(key))

    async def flush(self, key: DraftKey) -> Optional[JudgeScore]:
        """
        Write the pending draft for the key now.

        Waits for an in-flight write of the same key. Errors propagate to the
        caller. Returns None when nothing was pending.
        """
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        return await self._write_pending(key)

    async def flush_all(self) -> None:
        for key in list(self._pending.keys()):
            try:
                await self.flush(key)
            except Exception as e:
                logger.error(f"Draft flush failed for {key}: {e}")

    async def close(self) -> None:
        """Stop all timers, write everything pending, then wait for background writes already running."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        await self.flush_all()
        if self._writing:
            await asyncio.gather(*self._writing, return_exceptions=True)

    def _lock_for(self, key: DraftKey) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks.setdefault(key, asyncio.Lock())
        return lock

    async def _flush_later(self, key: DraftKey) -> None:
        await asyncio.sleep(self.delay_seconds)

        # From here on a new submit must not cancel the write
        task = asyncio.current_task()
        if self._timers.get(key) is task:
            del self._timers[key]
        self._writing.add(task)

        try:
            await self._write_pending(key)
        except Exception as e:
            logger.error(f"Background draft write failed for {key}: {e}")
        finally:
            self._writing.discard(task)

    async def _write_pending(self, key: DraftKey) -> Optional[JudgeScore]:
        async with self._lock_for(key):
            payload = self._pending.pop(key, None)
            if payload is None:
                return None
            raw_scores, notes = payload
            segment_id, candidate_id, judge_id = key

            async with self.session_factory() as db:
                return await score_ledger_service.submit_draft(
                    db,
                    segment_id,
                    candidate_id,
                    judge_id,
                    raw_scores,
                    notes=notes,
                    adapter=self._adapter_provider()
                )


# Global debouncer instance (initialized on startup)
_draft_debouncer: Optional[DraftDebouncer] = None


def get_draft_debouncer() -> Optional[DraftDebouncer]:
    return _draft_debouncer


def set_draft_debouncer(debouncer: Optional[DraftDebouncer]) -> None:
    global _draft_debouncer
    _draft_debouncer = debouncer
