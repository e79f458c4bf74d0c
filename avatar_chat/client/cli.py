#!/usr/bin/env python3
"""
Terminal client for the avatar chat backend.

Plain lines are sent as text turns. Commands:
  /rec    start or stop a voice recording
  /clear  clear the conversation
  /quit   exit
"""

import argparse
import asyncio
import sys
from typing import Optional

from avatar_chat.client.audio_capture import AudioCaptureManager
from avatar_chat.client.playback import PlaybackManager
from avatar_chat.client.session_view import Activity, ClientSessionView, MessageLevel, Sender
from avatar_chat.client.transport import ChatSocketClient
from avatar_chat.config.logging_config import configure_logging, get_logger
from avatar_chat.config.settings import get_client_settings

logger = get_logger(__name__)

PREFIX = {
    Sender.USER: "you",
    Sender.AI: "avatar",
    Sender.SYSTEM: "*",
}


class TerminalRenderer:
    """Prints log entries and status changes as the view updates"""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self._printed = 0
        self._speaking = False
        self._status: Optional[str] = None

    def __call__(self, view: ClientSessionView) -> None:
        new_messages = [m for m in view.messages if m.id > self._printed]
        for message in new_messages:
            marker = " !" if message.level == MessageLevel.ERROR else ""
            print(f"[{PREFIX[message.sender]}{marker}] {message.text}", file=self.out)
            self._printed = message.id

        status = view.status_text() if view.activity == Activity.AWAITING_RESPONSE and view.processing_status else None
        if status and status != self._status:
            print(f"  ... {status}", file=self.out)
        self._status = status

        if view.avatar_speaking != self._speaking:
            self._speaking = view.avatar_speaking
            print("  🗣️ avatar speaking" if self._speaking else "  🤐 avatar quiet", file=self.out)
        self.out.flush()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="avatar-chat", description="Talk to the AI avatar from a terminal")
    parser.add_argument("--url", help="Backend websocket URL (default: AVATAR_CHAT_BACKEND_URL or ws://localhost:8080/ws/chat)")
    parser.add_argument("--log-level", default="WARN", help="Log level (TRACE, DEBUG, INFO, WARN, ERROR)")
    parser.add_argument("--no-audio", action="store_true", help="Text only: disable microphone and speaker")
    return parser


async def handle_line(view: ClientSessionView, line: str) -> bool:
    """Apply one input line; returns False when the client should exit."""
    line = line.strip()
    if not line:
        return True
    if line == "/quit":
        return False
    if line == "/rec":
        await view.toggle_recording()
    elif line == "/clear":
        await view.clear_conversation()
    elif line.startswith("/"):
        print(f"Unknown command: {line} (try /rec, /clear, /quit)")
    elif not await view.send_text(line):
        print("(not sent: not connected, or a recording or reply is in progress)")
    return True


async def run(url: Optional[str], no_audio: bool) -> int:
    settings = get_client_settings()
    transport = ChatSocketClient(url=url, settings=settings)
    capture = None if no_audio else AudioCaptureManager(settings.sample_rate, settings.channels)
    playback = None if no_audio else PlaybackManager()

    async with ClientSessionView(transport, capture, playback) as view:
        view.subscribe(TerminalRenderer())
        if not await view.connect():
            return 1

        print("Type a message, /rec to record, /clear to reset, /quit to exit.")
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            if not await handle_line(view, line):
                break
    return 0


def main(argv=None) -> int:
    """Console entry point (avatar-chat)"""
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        return asyncio.run(run(args.url, args.no_audio))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
