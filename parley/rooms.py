"""Manual room operations used by the CLI."""

from __future__ import annotations

import logging

from parley.core.ports import TransportPort
from parley.errors import CreateError, InviteError, JoinError, ParleyError

log = logging.getLogger("rooms")

DIRECT_ROOM_NAME = "Chat with the assistant"
DIRECT_ROOM_TOPIC = "Direct conversation with the assistant"


async def join_room(transport: TransportPort, room_id: str) -> None:
    log.info("Attempting to join room: %s", room_id)
    try:
        await transport.join(room_id)
    except JoinError:
        raise
    except ParleyError as e:
        raise JoinError(f"failed to join room {room_id}: {e}") from e
    log.info("Successfully joined room %s", room_id)


async def invite_user(
    transport: TransportPort,
    user_id: str,
    room_id: str | None = None,
    create_room: bool = False,
) -> str:
    """Invite ``user_id``, creating a direct room first when needed.

    Returns the room the user was invited to. A welcome message is sent
    afterwards; failing to deliver it is logged but not raised.
    """
    if create_room or not room_id:
        log.info("Creating new room and inviting %s", user_id)
        try:
            target = await transport.create_room(
                DIRECT_ROOM_NAME, DIRECT_ROOM_TOPIC, [user_id], True
            )
        except CreateError:
            raise
        except ParleyError as e:
            raise CreateError(f"failed to create room: {e}") from e
        log.info("Successfully created room %s and invited %s", target, user_id)
    else:
        target = room_id
        log.info("Inviting %s to room %s", user_id, target)
        try:
            await transport.invite(target, user_id)
        except InviteError:
            raise
        except ParleyError as e:
            raise InviteError(f"failed to invite user: {e}") from e
        log.info("Successfully invited %s to room %s", user_id, target)

    try:
        await transport.send(target, f"Hello {user_id}! Mention me to start a conversation.")
    except Exception as e:
        log.warning("Failed to send welcome message: %s", e)
    else:
        log.info("Sent welcome message")
    return target
