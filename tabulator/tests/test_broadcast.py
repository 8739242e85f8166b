"""
Broadcast Test Suite

Adapter contract, channel isolation and backpressure, local fan-out through
the connection manager, and publish-after-commit from the services.
"""
import asyncio
import json

import pytest

from tabulator.realtime.broadcast_adapter import BroadcastAdapter
from tabulator.realtime.connection_manager import ConnectionManager
from tabulator.realtime.in_memory_adapter import InMemoryAdapter
from tabulator.realtime.ws_server import build_snapshot_message, open_stream, send_delta_events
from tabulator.services import score_ledger_service, session_state_service
from tabulator.services.live_event_service import channel_for
from tabulator.services.read_model_service import load_snapshot


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_event():
    return {
        "type": "EVENT",
        "event_id": "event-1",
        "event_sequence": 1,
        "event_hash": "abc123" * 10,
        "event_type": "SCORE_DRAFT_SAVED",
        "payload": {"candidate_id": "cand-1", "total": 12.0}
    }


class FakeWebSocket:
    """Collects what the server sends."""

    def __init__(self):
        self.sent = []

    async def send_text(self, text):
        self.sent.append(json.loads(text))


class FailingAdapter(BroadcastAdapter):
    async def publish(self, channel, message):
        raise ConnectionError("broker down")

    async def subscribe(self, channel):
        if False:
            yield

    async def close(self):
        pass


class RacingWebSocket(FakeWebSocket):
    """Runs `on_first_send` right after the first message goes out."""

    def __init__(self, on_first_send):
        super().__init__()
        self.on_first_send = on_first_send

    async def send_text(self, text):
        await super().send_text(text)
        if self.on_first_send is not None:
            hook, self.on_first_send = self.on_first_send, None
            await hook()


async def wait_for_messages(websocket, count, timeout=1.0):
    async def poll():
        while len(websocket.sent) < count:
            await asyncio.sleep(0.01)
    await asyncio.wait_for(poll(), timeout=timeout)


# =============================================================================
# Test: Message Validation
# =============================================================================

@pytest.mark.asyncio
async def test_message_validation_required_fields(adapter):
    with pytest.raises(ValueError) as exc:
        await adapter.publish("event:1", {"event_hash": "abc", "event_id": "1"})
    assert "event_sequence" in str(exc.value)

    with pytest.raises(ValueError) as exc:
        await adapter.publish("event:1", {"event_sequence": 1, "event_id": "1"})
    assert "event_hash" in str(exc.value)

    with pytest.raises(ValueError) as exc:
        await adapter.publish("event:1", {"event_sequence": 1, "event_hash": "abc"})
    assert "event_id" in str(exc.value)


@pytest.mark.asyncio
async def test_deterministic_serialization(adapter, sample_event):
    unsorted_event = {
        "payload": {"z_key": 1, "a_key": 2},
        "event_sequence": 1,
        "type": "EVENT",
        "event_id": "event-1",
        "event_hash": "abc123" * 10
    }
    received = []

    async def subscriber():
        async for msg in adapter.subscribe("test:channel"):
            received.append(msg)
            break

    task = asyncio.create_task(subscriber())
    await asyncio.sleep(0)
    await adapter.publish("test:channel", unsorted_event)
    await asyncio.wait_for(task, timeout=1.0)

    assert list(received[0].keys()) == sorted(received[0].keys())
    assert adapter.encode(unsorted_event) == adapter.encode(dict(sorted(unsorted_event.items())))


# =============================================================================
# Test: Delivery
# =============================================================================

@pytest.mark.asyncio
async def test_every_subscriber_receives_in_order(adapter, sample_event):
    received = {"a": [], "b": []}

    async def subscriber(name):
        async for msg in adapter.subscribe("event:event-1"):
            received[name].append(msg["event_sequence"])
            if len(received[name]) >= 3:
                break

    tasks = [asyncio.create_task(subscriber("a")), asyncio.create_task(subscriber("b"))]
    await asyncio.sleep(0)
    assert adapter.subscriber_count("event:event-1") == 2

    for sequence in (1, 2, 3):
        await adapter.publish("event:event-1", {**sample_event, "event_sequence": sequence})

    await asyncio.wait_for(asyncio.gather(*tasks), timeout=2.0)
    assert received == {"a": [1, 2, 3], "b": [1, 2, 3]}


@pytest.mark.asyncio
async def test_channel_isolation(adapter, sample_event):
    other_received = []

    async def other_subscriber():
        async for msg in adapter.subscribe("event:event-2"):
            other_received.append(msg)
            break

    task = asyncio.create_task(other_subscriber())
    await asyncio.sleep(0)
    await adapter.publish("event:event-1", sample_event)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(task, timeout=0.2)
    assert other_received == []


@pytest.mark.asyncio
async def test_full_queue_drops_for_slow_subscriber_only(sample_event):
    adapter = InMemoryAdapter(queue_size=2)
    subscription = adapter.subscribe("event:event-1").__aiter__()
    first = asyncio.ensure_future(subscription.__anext__())
    await asyncio.sleep(0)

    for sequence in range(1, 6):
        await adapter.publish("event:event-1", {**sample_event, "event_sequence": sequence})

    received = [(await asyncio.wait_for(first, timeout=1.0))["event_sequence"]]
    received.append((await asyncio.wait_for(subscription.__anext__(), timeout=1.0))["event_sequence"])

    assert received == [1, 2]
    await adapter.close()


@pytest.mark.asyncio
async def test_close_ends_subscriptions(sample_event):
    adapter = InMemoryAdapter()
    received = []

    async def subscriber():
        async for msg in adapter.subscribe("event:event-1"):
            received.append(msg)

    task = asyncio.create_task(subscriber())
    await asyncio.sleep(0)
    await adapter.close()

    await asyncio.wait_for(task, timeout=1.0)
    assert received == []


@pytest.mark.asyncio
async def test_subscriber_cleanup_on_cancel(adapter, sample_event):
    async def subscriber():
        async for _ in adapter.subscribe("event:event-1"):
            pass

    task = asyncio.create_task(subscriber())
    await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert adapter.subscriber_count("event:event-1") == 0
    await adapter.publish("event:event-1", sample_event)


# =============================================================================
# Test: Publish After Commit
# =============================================================================

@pytest.mark.asyncio
async def test_publish_failure_does_not_fail_the_write(db_session, seeded):
    row = await score_ledger_service.submit_draft(
        db_session, seeded.gown, "cand-1", "judge-1", {"crit-a": 4}, adapter=FailingAdapter()
    )

    assert row.total == 4.0
    snapshot = await load_snapshot(db_session, seeded.event_id)
    assert snapshot.sequence == 1


@pytest.mark.asyncio
async def test_publish_without_adapter_is_silent(db_session, seeded):
    state = await session_state_service.set_paused(db_session, seeded.event_id, True)
    assert state.is_paused is True


@pytest.mark.asyncio
async def test_operator_write_reaches_subscriber(db_session, seeded, adapter):
    subscription = adapter.subscribe(channel_for(seeded.event_id)).__aiter__()
    pending = asyncio.ensure_future(subscription.__anext__())
    await asyncio.sleep(0)

    await session_state_service.start_session(db_session, seeded.event_id, adapter=adapter)
    message = await asyncio.wait_for(pending, timeout=1.0)

    assert message["event_type"] == "SESSION_STARTED"
    assert message["payload"]["active_segment_id"] == seeded.gown
    assert message["payload"]["phase"] == "judging"
    await subscription.aclose()


# =============================================================================
# Test: Connection Manager Fan-out
# =============================================================================

@pytest.mark.asyncio
async def test_manager_relays_channel_to_local_sockets(adapter, sample_event):
    manager = ConnectionManager(adapter)
    judge_socket, admin_socket = FakeWebSocket(), FakeWebSocket()

    await manager.connect(judge_socket, "event-1", role="judge", subject_id="judge-1")
    await manager.connect(admin_socket, "event-1", role="admin")
    await asyncio.sleep(0.01)
    assert manager.get_connection_count("event-1") == 2

    await adapter.publish("event:event-1", sample_event)
    await wait_for_messages(judge_socket, 1)
    await wait_for_messages(admin_socket, 1)

    assert judge_socket.sent[0]["event_sequence"] == 1
    assert manager.connections["event-1"][judge_socket]["last_sequence"] == 1

    await manager.disconnect(judge_socket, "event-1")
    await manager.disconnect(admin_socket, "event-1")
    assert manager.get_connection_count() == 0
    await manager.close()


@pytest.mark.asyncio
async def test_manager_drops_oldest_when_queue_full(adapter, sample_event):
    manager = ConnectionManager(adapter, max_queue_size=2)
    websocket = FakeWebSocket()
    manager.connections["event-1"] = {websocket: {"last_sequence": 0}}
    manager.message_queues[websocket] = asyncio.Queue(maxsize=2)

    for sequence in (1, 2, 3):
        manager.broadcast_to_event("event-1", {**sample_event, "event_sequence": sequence})

    queue = manager.message_queues[websocket]
    queued = [json.loads(queue.get_nowait())["event_sequence"] for _ in range(queue.qsize())]
    assert queued == [2, 3]


@pytest.mark.asyncio
async def test_ack_only_moves_forward(adapter):
    manager = ConnectionManager(adapter)
    websocket = FakeWebSocket()
    manager.update_ack(websocket, 5)
    manager.update_ack(websocket, 3)
    assert manager.last_ack[websocket] == 5


# =============================================================================
# Test: WebSocket Payloads
# =============================================================================

@pytest.mark.asyncio
async def test_snapshot_message_reflects_active_segment(db_session, seeded):
    await session_state_service.start_session(db_session, seeded.event_id)
    await score_ledger_service.submit_draft(
        db_session, seeded.gown, "cand-2", "judge-1", {"crit-a": 10, "crit-b": 5}
    )

    message = build_snapshot_message(await load_snapshot(db_session, seeded.event_id))

    assert message["type"] == "SNAPSHOT"
    assert message["event_sequence"] == 2
    assert message["data"]["segment_id"] == seeded.gown
    leaderboard = message["data"]["leaderboard"]
    assert leaderboard[0]["candidate_id"] == "cand-2"
    assert leaderboard[0]["composite"] == 100.0
    # The three unscored candidates share second place
    assert message["data"]["tie_groups"] == [
        {"rank": 2, "score": 0.0, "candidate_ids": ["cand-1", "cand-3", "cand-4"]}
    ]


@pytest.mark.asyncio
async def test_delta_replay_sends_missed_events(session_factory, seeded):
    async with session_factory() as db:
        await session_state_service.start_session(db, seeded.event_id)
        await session_state_service.set_active_candidate(db, seeded.event_id, "cand-2")
        await session_state_service.set_paused(db, seeded.event_id, True)

    websocket = FakeWebSocket()
    await send_delta_events(websocket, seeded.event_id, 1, session_factory)

    assert [m["event_sequence"] for m in websocket.sent] == [2, 3]
    assert websocket.sent[-1]["payload"]["is_paused"] is True


def test_decode_discards_non_object_payloads():
    adapter = InMemoryAdapter()
    assert adapter.decode("not json", "event:event-1") is None
    assert adapter.decode("[1, 2]", "event:event-1") is None
    assert adapter.decode('{"event_sequence": 3}', "event:event-1") == {"event_sequence": 3}


@pytest.mark.asyncio
async def test_manager_skips_sequences_the_client_already_has(adapter, sample_event):
    manager = ConnectionManager(adapter)
    websocket = FakeWebSocket()
    manager.connections["event-1"] = {websocket: {"last_sequence": 5}}
    manager.message_queues[websocket] = asyncio.Queue()

    manager.broadcast_to_event("event-1", {**sample_event, "event_sequence": 3})
    manager.broadcast_to_event("event-1", {**sample_event, "event_sequence": 6})

    queue = manager.message_queues[websocket]
    assert [json.loads(queue.get_nowait())["event_sequence"] for _ in range(queue.qsize())] == [6]


# =============================================================================
# Test: Stream Handshake
# =============================================================================

@pytest.mark.asyncio
async def test_snapshot_goes_out_before_live_events(session_factory, seeded, adapter):
    async with session_factory() as db:
        await session_state_service.start_session(db, seeded.event_id)

    manager = ConnectionManager(adapter)
    websocket = FakeWebSocket()
    sequence = await open_stream(websocket, manager, seeded.event_id, "admin", None, 0, session_factory)

    assert sequence == 1
    assert [m["type"] for m in websocket.sent] == ["SNAPSHOT"]
    await asyncio.sleep(0.01)

    async with session_factory() as db:
        await session_state_service.set_paused(db, seeded.event_id, True, adapter=adapter)
    await wait_for_messages(websocket, 2)

    assert websocket.sent[1]["type"] == "EVENT"
    assert websocket.sent[1]["event_sequence"] == 2
    await manager.disconnect(websocket, seeded.event_id)
    await manager.close()


@pytest.mark.asyncio
async def test_write_during_handshake_is_covered_by_fresh_snapshot(session_factory, seeded, adapter):
    async def operator_pauses():
        async with session_factory() as db:
            await session_state_service.set_paused(db, seeded.event_id, True)

    manager = ConnectionManager(adapter)
    websocket = RacingWebSocket(operator_pauses)
    sequence = await open_stream(websocket, manager, seeded.event_id, "judge", "judge-1", 0, session_factory)

    assert sequence == 1
    await wait_for_messages(websocket, 2)
    assert [m["type"] for m in websocket.sent] == ["SNAPSHOT", "SNAPSHOT"]
    assert websocket.sent[0]["event_sequence"] == 0
    assert websocket.sent[1]["event_sequence"] == 1
    assert websocket.sent[1]["data"]["session"]["is_paused"] is True
    await manager.disconnect(websocket, seeded.event_id)
    await manager.close()


@pytest.mark.asyncio
async def test_reconnect_replays_only_missed_events(session_factory, seeded, adapter):
    async with session_factory() as db:
        await session_state_service.start_session(db, seeded.event_id)
        await session_state_service.set_paused(db, seeded.event_id, True)

    manager = ConnectionManager(adapter)
    websocket = FakeWebSocket()
    sequence = await open_stream(websocket, manager, seeded.event_id, "admin", None, 1, session_factory)

    assert sequence == 2
    assert [(m["type"], m["event_sequence"]) for m in websocket.sent] == [("EVENT", 2)]
    assert manager.connections[seeded.event_id][websocket]["last_sequence"] == 2
    await manager.disconnect(websocket, seeded.event_id)
    await manager.close()
