# -*- coding: utf-8 -*-
"""
Command line entry point.

Usage:
    python -m coachchat.cli serve [--host HOST] [--port PORT]
    python -m coachchat.cli add-user <email> --role client|dietitian [--first-name X] [--last-name Y]
    python -m coachchat.cli rooms
    python -m coachchat.cli chat <counterpart_id>
    python -m coachchat.cli chat --room <room_id>

The client commands read the bearer token from --token or COACHCHAT_TOKEN.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the reference chat server."""
    import uvicorn

    from .config import settings

    uvicorn.run(
        "coachchat.api:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=False,
    )
    return 0


def cmd_add_user(args: argparse.Namespace) -> int:
    """Create a user in the reference server database and print a bearer token."""
    from pydantic import ValidationError

    from .app_db import init_app_db
    from .auth.models import UserCreateRequest
    from .auth.security import create_access_token
    from .auth.storage import create_user, get_user_by_email
    from .config import settings

    try:
        req = UserCreateRequest(
            email=args.email,
            role=args.role,
            first_name=args.first_name,
            last_name=args.last_name,
        )
    except ValidationError as exc:
        print(f"Error: {exc.errors()[0]['msg']}")
        return 1

    init_app_db(settings.app_db_path)
    user = get_user_by_email(req.email)
    if user is None:
        user = create_user(
            email=req.email,
            role=req.role,
            first_name=req.first_name,
            last_name=req.last_name,
        )
        print(f"Created {user['role']} #{user['id']} <{user['email']}>")
    else:
        print(f"Existing {user['role']} #{user['id']} <{user['email']}>")

    token = create_access_token(user_id=int(user["id"]), role=user["role"])
    print(f"Token: {token}")
    return 0


def _session(args: argparse.Namespace):
    from .client import SessionStore
    from .config import settings

    token = args.token or settings.token
    if not token:
        print("Error: no token. Pass --token or set COACHCHAT_TOKEN.")
        return None
    return SessionStore(token=token)


async def _rooms(args: argparse.Namespace) -> int:
    from .client import ChatClient
    from .errors import ChatError

    session = _session(args)
    if session is None:
        return 1
    async with ChatClient(session) as client:
        try:
            rooms = await client.conversations()
        except ChatError as exc:
            print(f"Error: {exc.message}")
            return 1
        me = session.user
        if not rooms:
            print("No conversations yet.")
            return 0
        for room in rooms:
            other = room.counterpart_for(me)
            last = room.last_message.content if room.last_message else ""
            print(f"[{room.id}] {other.display_name} (#{other.id})  {last[:60]}")
    return 0


def cmd_rooms(args: argparse.Namespace) -> int:
    """List conversations of the signed-in party."""
    return asyncio.run(_rooms(args))


def _print_messages(controller, messages, printed: set) -> None:
    for message in messages:
        if message.id in printed:
            continue
        printed.add(message.id)
        who = "me" if controller.is_mine(message) else message.sender.display_name
        stamp = message.created_at.astimezone().strftime("%H:%M")
        extra = ""
        if message.image:
            extra = f"  [image {message.image}]"
        elif message.file:
            extra = f"  [file {message.file}]"
        print(f"{stamp} {who}: {message.content}{extra}")


async def _chat(args: argparse.Namespace) -> int:
    from .client import Attachment, ChatClient, ConnectionStatus
    from .errors import AuthExpiredError, ChatError

    session = _session(args)
    if session is None:
        return 1

    printed: set = set()
    holder: List = []

    def on_change(messages) -> None:
        if holder:
            _print_messages(holder[0], messages, printed)

    def on_error(exc: ChatError) -> None:
        print(f"! {exc.message}")

    def on_status(status) -> None:
        if status == ConnectionStatus.FAILED:
            print("! Disconnected. Restart the chat to reconnect.")

    async with ChatClient(session) as client:
        try:
            if args.room:
                controller = await client.open_room(args.room, on_change=on_change, on_error=on_error, on_status=on_status)
            else:
                controller = await client.open_chat_with(
                    args.counterpart, on_change=on_change, on_error=on_error, on_status=on_status
                )
        except ChatError as exc:
            print(f"Error: {exc.message}")
            return 1
        holder.append(controller)
        _print_messages(controller, controller.messages, printed)
        print(f"-- room {controller.room_id}. /image PATH, /file PATH, /clear, /quit --")

        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.rstrip("\n")
            if line == "/quit":
                break
            if line == "/clear":
                controller.clear_attachment()
                continue
            if line.startswith(("/image ", "/file ")):
                kind, _, path = line[1:].partition(" ")
                try:
                    controller.stage_attachment(Attachment.from_path(Path(path.strip()), kind=kind))
                except OSError as exc:
                    print(f"! Cannot read {path}: {exc}")
                    continue
                print(f"(staged {kind} {Path(path.strip()).name})")
                continue
            try:
                await controller.send(line)
            except AuthExpiredError:
                print("! Session expired. Get a new token and restart.")
                return 1
            except ChatError as exc:
                print(f"! Not sent: {exc.message}")
    return 0


def cmd_chat(args: argparse.Namespace) -> int:
    """Interactive terminal chat."""
    if not args.room and not args.counterpart:
        print("Error: give a counterpart id or --room")
        return 1
    return asyncio.run(_chat(args))


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Client/dietitian chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        help="Logging level (default: WARNING)",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve command
    serve_parser = subparsers.add_parser("serve", help="Run the reference chat server")
    serve_parser.add_argument("--host", default=None, help="Bind host")
    serve_parser.add_argument("--port", type=int, default=None, help="Bind port")

    # add-user command
    user_parser = subparsers.add_parser("add-user", help="Create a user and print a token")
    user_parser.add_argument("email", help="Email address")
    user_parser.add_argument("--role", choices=["client", "dietitian"], required=True)
    user_parser.add_argument("--first-name", default="")
    user_parser.add_argument("--last-name", default="")

    # rooms command
    rooms_parser = subparsers.add_parser("rooms", help="List conversations")
    rooms_parser.add_argument("--token", default=None, help="Bearer token")

    # chat command
    chat_parser = subparsers.add_parser("chat", help="Chat in a terminal")
    chat_parser.add_argument("counterpart", nargs="?", type=int, help="Counterpart party id")
    chat_parser.add_argument("--room", type=int, default=None, help="Open a known room id")
    chat_parser.add_argument("--token", default=None, help="Bearer token")

    args = parser.parse_args()
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "serve": cmd_serve,
        "add-user": cmd_add_user,
        "rooms": cmd_rooms,
        "chat": cmd_chat,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
