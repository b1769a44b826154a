import asyncio

import pytest

from parley.core.models import Event, EventKind, SessionState
from parley.core.session import SessionLoop, SessionStatus
from parley.errors import AuthenticationError, StreamError

from fakes import BLOCK, MemoryCursorStore, make_message


def _loop(transport, cursor_store, handler=None, **kwargs):
    received: list[Event] = []

    async def record(event):
        received.append(event)

    loop = SessionLoop(
        transport,
        cursor_store,
        handler or record,
        state=SessionState(startup_time=1_000),
        reconnect_delay_s=0,
        **kwargs,
    )
    return loop, received


def test_events_older_than_startup_are_rejected(transport, cursor_store):
    loop, _ = _loop(transport, cursor_store)

    assert loop.admit(make_message("alice@example.org", "old", 999)) is False
    assert loop.admit(make_message("alice@example.org", "new", 1_001)) is True


def test_watermark_never_moves_backwards(transport, cursor_store):
    loop, _ = _loop(transport, cursor_store)
    seen = []
    for ts in [1_500, 1_200, 2_000, 1_800, 2_000, 2_500]:
        loop.admit(make_message("alice@example.org", "x", ts))
        seen.append(loop.state.last_processed_time)

    assert seen == sorted(seen)
    assert seen[-1] == 2_500


def test_zero_timestamp_is_admitted_without_moving_watermark(transport, cursor_store):
    loop, _ = _loop(transport, cursor_store)

    assert loop.admit(make_message("alice@example.org", "x", 0)) is True
    assert loop.state.last_processed_time == 1_000


@pytest.mark.asyncio
async def test_auth_failure_clears_cursor_and_stops(transport):
    store = MemoryCursorStore("s-old")
    transport.token = "s-new"
    transport.script = [[RuntimeError("M_UNKNOWN_TOKEN: Invalid access token")]]
    loop, _ = _loop(transport, store)

    with pytest.raises(AuthenticationError):
        await loop.run()

    assert store.writes == [""]
    assert loop.state.cursor == ""
    assert transport.streams_started == 1
    assert transport.cursors_seen == ["s-old"]
    assert loop.status is SessionStatus.TERMINAL


@pytest.mark.asyncio
async def test_transient_error_persists_cursor_and_reconnects(transport, cursor_store):
    transport.token = "s1"
    transport.script = [
        [StreamError("read timeout")],
        [],
        [AuthenticationError("not-authorized")],
    ]
    loop, _ = _loop(transport, cursor_store)

    with pytest.raises(AuthenticationError):
        await loop.run()

    assert transport.streams_started == 3
    assert transport.cursors_seen == [None, "s1", "s1"]
    assert cursor_store.writes == ["s1", "s1", ""]


@pytest.mark.asyncio
async def test_messages_are_dispatched_but_own_messages_are_not(transport, cursor_store):
    transport.script = [
        [
            make_message("alice@example.org", "hi henry", 2_000),
            make_message("henry@example.org", "hello alice", 3_000),
            make_message("bob@example.org", "stale", 500),
            make_message("bob@example.org", "hey", 4_000),
            RuntimeError("401 Unauthorized"),
        ]
    ]
    loop, received = _loop(transport, cursor_store)

    with pytest.raises(AuthenticationError):
        await loop.run()
    await loop.drain()

    assert [e.body for e in received] == ["hi henry", "hey"]


@pytest.mark.asyncio
async def test_invite_for_us_triggers_join(transport, cursor_store):
    invite = Event(
        id="inv-1",
        room_id="lobby@conference.example.org",
        sender_id="alice@example.org",
        kind=EventKind.MEMBERSHIP,
        timestamp=2_000,
        membership="invite",
        target_id="henry@example.org",
    )
    other = Event(
        id="inv-2",
        room_id="other@conference.example.org",
        sender_id="alice@example.org",
        kind=EventKind.MEMBERSHIP,
        timestamp=3_000,
        membership="invite",
        target_id="bob@example.org",
    )
    transport.script = [[invite, other, AuthenticationError("not-authorized")]]
    loop, received = _loop(transport, cursor_store)

    with pytest.raises(AuthenticationError):
        await loop.run()
    await loop.drain()

    assert transport.joined == ["lobby@conference.example.org"]
    assert received == []


@pytest.mark.asyncio
async def test_handler_errors_do_not_stop_the_stream(transport, cursor_store):
    calls = []

    async def failing(event):
        calls.append(event.body)
        raise RuntimeError("handler blew up")

    transport.script = [
        [
            make_message("alice@example.org", "one", 2_000),
            make_message("alice@example.org", "two", 3_000),
            AuthenticationError("not-authorized"),
        ]
    ]
    loop, _ = _loop(transport, cursor_store, handler=failing)

    with pytest.raises(AuthenticationError):
        await loop.run()
    await loop.drain()

    assert sorted(calls) == ["one", "two"]


@pytest.mark.asyncio
async def test_stop_ends_loop_after_current_stream(transport, cursor_store):
    loop_ref = {}

    async def stop_on_message(event):
        loop_ref["loop"].stop()

    transport.script = [
        [make_message("alice@example.org", "bye", 2_000), StreamError("closed")],
    ]
    loop, _ = _loop(transport, cursor_store, handler=stop_on_message)
    loop_ref["loop"] = loop

    await asyncio.wait_for(loop.run(), timeout=5)

    assert transport.streams_started == 1
    assert loop.status is SessionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_cancellation_keeps_cursor(transport):
    store = MemoryCursorStore("s1")
    transport.script = [[BLOCK]]
    loop, _ = _loop(transport, store)

    task = asyncio.create_task(loop.run())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert "" not in store.writes
    assert loop.state.cursor == "s1"
    assert loop.status is SessionStatus.DISCONNECTED


@pytest.mark.asyncio
async def test_handler_concurrency_is_capped(transport, cursor_store):
    active = 0
    peak = 0
    release = asyncio.Event()

    async def slow(event):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await release.wait()
        active -= 1

    transport.script = [
        [make_message("alice@example.org", str(i), 2_000 + i) for i in range(5)]
        + [AuthenticationError("not-authorized")]
    ]
    loop, _ = _loop(transport, cursor_store, handler=slow, max_concurrent_handlers=2)

    with pytest.raises(AuthenticationError):
        await loop.run()
    for _ in range(5):
        await asyncio.sleep(0)
    release.set()
    await loop.drain()

    assert peak == 2


@pytest.mark.asyncio
async def test_rejected_credentials_at_connect_clear_cursor(transport):
    store = MemoryCursorStore("s-old")
    transport.connect_error = AuthenticationError("not-authorized")
    loop, _ = _loop(transport, store)

    with pytest.raises(AuthenticationError):
        await loop.run()

    assert store.writes == [""]
    assert transport.streams_started == 0
    assert loop.status is SessionStatus.TERMINAL
