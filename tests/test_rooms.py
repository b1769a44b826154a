import pytest

from parley.errors import JoinError
from parley.rooms import invite_user, join_room


@pytest.mark.asyncio
async def test_join_room_joins(transport):
    await join_room(transport, "lobby@conference.example.org")

    assert transport.joined == ["lobby@conference.example.org"]


@pytest.mark.asyncio
async def test_join_room_failure_propagates(transport):
    async def broken(room_id):
        raise JoinError(f"failed to join {room_id}")

    transport.join = broken

    with pytest.raises(JoinError):
        await join_room(transport, "lobby@conference.example.org")


@pytest.mark.asyncio
async def test_invite_without_room_creates_direct_room(transport):
    room = await invite_user(transport, "alice@example.org")

    assert room == "new-room@conference.example.org"
    name, topic, invitees, is_direct = transport.created[0]
    assert invitees == ["alice@example.org"]
    assert is_direct is True
    assert transport.invited == []
    assert transport.sent[0][0] == room
    assert "alice@example.org" in transport.sent[0][1]


@pytest.mark.asyncio
async def test_invite_into_existing_room(transport):
    room = await invite_user(transport, "alice@example.org", room_id="lobby@conference.example.org")

    assert room == "lobby@conference.example.org"
    assert transport.invited == [("lobby@conference.example.org", "alice@example.org")]
    assert transport.created == []


@pytest.mark.asyncio
async def test_create_flag_wins_over_room(transport):
    room = await invite_user(
        transport, "alice@example.org", room_id="lobby@conference.example.org", create_room=True
    )

    assert room == "new-room@conference.example.org"
    assert transport.invited == []


@pytest.mark.asyncio
async def test_welcome_failure_is_not_fatal(transport):
    transport.fail_send = True

    room = await invite_user(transport, "alice@example.org", room_id="lobby@conference.example.org")

    assert room == "lobby@conference.example.org"
