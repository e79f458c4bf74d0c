"""
Avatar Chat - Session Registry

Purpose: Per-connection conversation state. One ConversationSession exists per
open websocket, created on connect and removed on disconnect. Nothing is
persisted and nothing is shared between sessions.

Key Features:
- Bounded rolling history (oldest entries evicted, default 6)
- Busy flag arbitrating one turn at a time
- History epoch: a clear bumps the epoch, and writes from a turn that started
  under an older epoch are dropped
- Per-session turn counters for the status endpoint

Design Patterns:
- Registry Pattern: Session lookup by id
- In-memory Cache: Session lives exactly as long as its connection
"""

import os
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Deque, Dict, Iterator, List, Literal, Optional, Tuple

from avatar_chat.config.logging_config import get_logger

logger = get_logger(__name__)

# Configuration from environment variables
HISTORY_WINDOW = int(os.getenv('HISTORY_WINDOW', '6'))

Speaker = Literal["User", "AI"]


@dataclass(frozen=True)
class HistoryEntry:
    """One line of conversation history."""
    speaker: Speaker
    text: str

    def render(self) -> str:
        return f"{self.speaker}: {self.text}"


@dataclass
class ConversationSession:
    """
    Server-side state of one connection.

    Attributes:
        session_id: Connection-scoped identifier
        history: Most recent history entries (bounded, chronological)
        busy: True while a turn is in flight
        epoch: Incremented on every clear
        created_at: When the connection opened
        turns_completed: Turns that reached `complete`
        turns_failed: Turns that ended with an error
    """
    session_id: str
    history_window: int = HISTORY_WINDOW
    history: Deque[HistoryEntry] = field(init=False)
    busy: bool = False
    epoch: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    turns_completed: int = 0
    turns_failed: int = 0

    def __post_init__(self):
        self.history = deque(maxlen=self.history_window)

    def append(self, speaker: Speaker, text: str, epoch: int) -> bool:
        """
        Append a history entry if `epoch` is still current.

        Returns:
            True if the entry was recorded, False if it was dropped
        """
        if epoch != self.epoch:
            logger.debug(
                f"🧹 Dropping stale history write: session={self.session_id}, "
                f"turn_epoch={epoch}, current_epoch={self.epoch}"
            )
            return False
        self.history.append(HistoryEntry(speaker, text))
        return True

    def history_snapshot(self) -> Tuple[str, ...]:
        """Rendered history, oldest first."""
        return tuple(entry.render() for entry in self.history)

    def clear_history(self) -> None:
        """Empty the history and start a new epoch. Allowed while busy."""
        self.history.clear()
        self.epoch += 1
        logger.info(f"🧹 History cleared: session={self.session_id}, epoch={self.epoch}")

    def to_status(self) -> dict:
        return {
            "session_id": self.session_id,
            "busy": self.busy,
            "history_entries": len(self.history),
            "turns_completed": self.turns_completed,
            "turns_failed": self.turns_failed,
            "created_at": self.created_at.isoformat(),
        }


class SessionRegistry:
    """
    In-memory registry of live sessions.

    Usage:
        registry = SessionRegistry()
        session = registry.create()
        ...
        registry.remove(session.session_id)
    """

    def __init__(self, history_window: int = HISTORY_WINDOW):
        self._sessions: Dict[str, ConversationSession] = {}
        self._history_window = history_window

    def create(self, session_id: Optional[str] = None) -> ConversationSession:
        """
        Create and register a new session.

        Raises:
            ValueError: If a session with this id already exists
        """
        session_id = session_id or str(uuid.uuid4())
        if session_id in self._sessions:
            raise ValueError(f"Session {session_id} already exists")

        session = ConversationSession(session_id=session_id, history_window=self._history_window)
        self._sessions[session_id] = session
        logger.info(f"✅ Session created: {session_id} (active={len(self._sessions)})")
        return session

    def get(self, session_id: str) -> ConversationSession:
        """
        Look up a session.

        Raises:
            KeyError: Unknown session id
        """
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Unknown session: {session_id}") from None

    def remove(self, session_id: str) -> Optional[ConversationSession]:
        """Remove a session; returns it, or None if it was already gone."""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info(f"👋 Session removed: {session_id} (active={len(self._sessions)})")
        return session

    def active_sessions(self) -> List[ConversationSession]:
        return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[ConversationSession]:
        return iter(list(self._sessions.values()))
