"""
Live Tabulation View

Server-side reactive view of one event: subscribes to the event channel,
reloads the snapshot whenever a newer log sequence arrives, recomputes the
leaderboard and tie groups, and notifies listeners.

Derived output is memoized by (sequence, segment), so repeated reads
between notifications cost nothing and an unchanged snapshot always
yields identical output.
"""
import asyncio
import contextlib
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.services.aggregation_engine import LeaderboardEntry, TieGroup
from tabulator.services.live_event_service import channel_for
from tabulator.services.read_model_service import (
    EventSnapshot, SessionView, leaderboard_for, load_snapshot, tie_groups_for
)
from tabulator.state_machines.session_phase import SessionPhase

logger = logging.getLogger(__name__)

Listener = Callable[["LiveTabulation"], Any]


@dataclass(frozen=True)
class LiveTabulation:
    sequence: int
    segment_id: Optional[str]
    phase: SessionPhase
    session: SessionView
    leaderboard: Tuple[LeaderboardEntry, ...]
    tie_groups: Tuple[TieGroup, ...]
    snapshot: EventSnapshot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.snapshot.event_id,
            "sequence": self.sequence,
            "segment_id": self.segment_id,
            "phase": self.phase.value,
            "session": self.session.to_dict(),
            "leaderboard": [e.to_dict() for e in self.leaderboard],
            "tie_groups": [g.to_dict() for g in self.tie_groups],
        }


class LiveTabulationView:
    """
    Follows one event and keeps its derived tabulation current.

    With segment_id None the view follows whatever segment is active.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        event_id: str,
        segment_id: Optional[str] = None
    ):
        self.session_factory = session_factory
        self.event_id = event_id
        self.segment_id = segment_id
        self._snapshot: Optional[EventSnapshot] = None
        self._last_sequence = -1
        self._listeners: List[Listener] = []
        self._memo: Dict[Tuple[int, Optional[str]], LiveTabulation] = {}
        self._refresh_lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[EventSnapshot]:
        return self._snapshot

    @property
    def last_sequence(self) -> int:
        return self._last_sequence

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def refresh(self) -> LiveTabulation:
        """Reload the snapshot and return the derived tabulation."""
        async with self._refresh_lock:
            async with self.session_factory() as db:
                snapshot = await load_snapshot(db, self.event_id)
            self._snapshot = snapshot
            self._last_sequence = max(self._last_sequence, snapshot.sequence)
        return self.current()

    def current(self) -> Optional[LiveTabulation]:
        snapshot = self._snapshot
        if snapshot is None:
            return None

        segment_id = self.segment_id or snapshot.session.active_segment_id
        key = (snapshot.sequence, segment_id)
        cached = self._memo.get(key)
        if cached is not None and cached.snapshot is snapshot:
            return cached

        tabulation = LiveTabulation(
            sequence=snapshot.sequence,
            segment_id=segment_id,
            phase=snapshot.session.phase,
            session=snapshot.session,
            leaderboard=tuple(leaderboard_for(snapshot, segment_id)),
            tie_groups=tuple(tie_groups_for(snapshot, segment_id)),
            snapshot=snapshot,
        )
        # Only the latest sequence is worth keeping
        self._memo = {key: tabulation}
        return tabulation

    async def handle_message(self, message: Dict[str, Any]) -> Optional[LiveTabulation]:
        """
        Apply a change notification.

        Messages for other events and sequences already seen are ignored.
        Returns the new tabulation, or None when the message was ignored.
        """
        if message.get("event_id") != self.event_id:
            return None
        sequence = message.get("event_sequence")
        if not isinstance(sequence, int) or sequence <= self._last_sequence:
            return None

        tabulation = await self.refresh()
        await self._notify(tabulation)
        return tabulation

    async def _notify(self, tabulation: LiveTabulation) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(tabulation)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Live view listener failed for event {self.event_id}: {e}")

    async def run(self, adapter: BroadcastAdapter) -> None:
        """
        Follow the event channel until cancelled.

        The subscription is registered before the initial load, so no
        change between the two is missed.
        """
        messages = adapter.subscribe(channel_for(self.event_id)).__aiter__()
        next_message = asyncio.ensure_future(messages.__anext__())
        await asyncio.sleep(0)

        try:
            await self._notify(await self.refresh())
            while True:
                try:
                    message = await next_message
                except StopAsyncIteration:
                    break
                await self.handle_message(message)
                next_message = asyncio.ensure_future(messages.__anext__())
        finally:
            next_message.cancel()
            with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration):
                await next_message
