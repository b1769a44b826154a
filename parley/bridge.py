"""
Parley - XMPP conversational relay

Listens on one XMPP account, answers direct chats and group-chat mentions
with replies from a language-model backend, and accepts room invitations.

Commands:
- parley [run]                          run the relay
- parley join ROOM                      join a group chat
- parley invite USER [--room R] [--create]
- parley debug                          show configuration and connectivity
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable

from parley.app import RelayApp
from parley.config import get_relay_config, load_env
from parley.errors import AuthenticationError, ParleyError

log = logging.getLogger("bridge")


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # slixmpp is chatty at DEBUG; only follow it when asked to.
    logging.getLogger("slixmpp").setLevel(level if verbose else logging.WARNING)


def _parse_args(argv: Iterable[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="parley", description="XMPP conversational relay")
    parser.add_argument("--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the relay (default)")

    join = sub.add_parser("join", help="Join a group chat")
    join.add_argument("room", help="Room JID, e.g. lobby@conference.example.org")

    invite = sub.add_parser("invite", help="Invite a user")
    invite.add_argument("user", help="User JID, e.g. alice@example.org")
    invite.add_argument("--room", default=None, help="Existing room to invite into")
    invite.add_argument(
        "--create",
        action="store_true",
        help="Create a new direct room instead of using --room",
    )

    sub.add_parser("debug", help="Show configuration and test the connection")

    args = parser.parse_args(list(argv))
    if not args.command:
        args.command = "run"
    return args


async def _dispatch(app: RelayApp, args: argparse.Namespace) -> None:
    if args.command == "join":
        await app.join_room(args.room)
    elif args.command == "invite":
        room = await app.invite_user(args.user, room_id=args.room, create_room=args.create)
        print(room)
    elif args.command == "debug":
        await app.run_debug()
    else:
        await app.run()


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    _configure_logging(args.verbose)
    load_env()

    try:
        config = get_relay_config()
    except ValueError as e:
        log.error("Configuration error: %s", e)
        return 2

    app = RelayApp(config)
    try:
        asyncio.run(_dispatch(app, args))
    except AuthenticationError as e:
        log.error("Authentication failed: %s", e)
        return 1
    except ParleyError as e:
        log.error("%s", e)
        return 1
    except KeyboardInterrupt:
        log.info("Shutting down...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
