"""Line-based chat consumer: stdin in, conversation events out."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional, TextIO

from .config import TRANSPORTS, ChatConfig, load_config_from_env
from .errors import ConfigurationError
from .models import LOCAL_ID_PREFIX, Message, SessionState
from .session import ConversationSession
from .session_store import SessionStore

COMMAND_NEW = "/new"
COMMAND_QUIT = "/quit"


def _format_message(message: Message) -> str:
    prefix = "you" if message.is_user else "bot"
    return f"{prefix}> {message.text}"


async def run_chat(config: ChatConfig, input_stream: TextIO, output: TextIO) -> int:
    loop = asyncio.get_running_loop()

    def _write(line: str) -> None:
        output.write(line + "\n")
        output.flush()

    def _on_message(message: Message) -> None:
        if message.id.startswith(LOCAL_ID_PREFIX):
            return
        _write(_format_message(message))

    def _on_typing(typing: bool) -> None:
        if typing:
            _write("... typing")

    async with ConversationSession(config, store=SessionStore(config.store_path)) as session:
        session.messages.subscribe(_on_message)
        session.typing.subscribe(_on_typing)
        state = await session.initialize()
        if state is not SessionState.READY:
            _write(f"error: {session.last_error}")
            return 1
        _write(f"connected to conversation {session.conversation_id} ({COMMAND_NEW} to restart, {COMMAND_QUIT} to exit)")

        while True:
            line = await loop.run_in_executor(None, input_stream.readline)
            if not line:
                break
            text = line.strip()
            if text == COMMAND_QUIT:
                break
            if text == COMMAND_NEW:
                previous = session.conversation_id
                await session.start_new_conversation()
                if session.conversation_id == previous:
                    _write(f"error: {session.last_error}; still in conversation {previous}")
                else:
                    _write(f"new conversation {session.conversation_id}")
                continue
            await session.send_message(text)
    return 0


def main(argv: list[str] | None = None, input_stream: Optional[TextIO] = None, output: Optional[TextIO] = None) -> int:
    """Entry point for the ``chat-sync`` command."""

    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(description="Chat with the remote conversational service")
    parser.add_argument("--transport", choices=TRANSPORTS, default=None, help="Override CHAT_SYNC_TRANSPORT")
    parser.add_argument("--store", type=str, default=None, help="Path of the credential store file")
    parser.add_argument("--log-level", default="WARNING", help="Logging level for the chat_sync logger")
    args = parser.parse_args(argv)

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    stream = output or sys.stdout

    try:
        config = load_config_from_env()
    except ConfigurationError as exc:
        stream.write(f"error: {exc}\n")
        return 1
    overrides = {}
    if args.transport:
        overrides["transport"] = args.transport
    if args.store:
        overrides["store_path"] = Path(args.store).expanduser()
    if overrides:
        config = dataclasses.replace(config, **overrides)

    return asyncio.run(run_chat(config, input_stream or sys.stdin, stream))


if __name__ == "__main__":  # pragma: no cover - convenience execution
    raise SystemExit(main())
