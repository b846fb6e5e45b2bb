"""In-memory conversation history per session."""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Iterator
import structlog

from ..core.scenarios import Scenario


logger = structlog.get_logger()


# Non-system turns replayed to a provider on each request
REPLAY_WINDOW = 8

ROLES = ("system", "user", "assistant")


class UnknownSession(KeyError):
    """Raised when appending to a session that was never created."""


@dataclass(frozen=True)
class ConversationTurn:
    """One message in a conversation."""

    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Invalid role: {self.role}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


class SessionStore:
    """Process-lifetime mapping from session id to conversation history.

    Every history starts with exactly one system turn. Stored histories only
    grow; ``windowed_view`` bounds what is sent to a provider without
    touching them.

    Writes for one session must be serialized by holding ``lock(session_id)``
    across the whole turn. Sessions never share a lock.
    """

    def __init__(self, replay_window: int = REPLAY_WINDOW):
        if replay_window < 1:
            raise ValueError("replay_window must be positive")
        self.replay_window = replay_window
        self._histories: Dict[str, List[ConversationTurn]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, session_id: str) -> asyncio.Lock:
        """Get the lock guarding one session's history."""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def ensure(self, session_id: str, scenario: Scenario) -> List[ConversationTurn]:
        """Create the session seeded with the scenario's instruction, or return it unchanged."""
        history = self._histories.get(session_id)
        if history is None:
            history = [ConversationTurn("system", scenario.system_instruction)]
            self._histories[session_id] = history
            logger.info(
                "Created new session", session_id=session_id, scenario_id=scenario.id
            )
        return list(history)

    def append(self, session_id: str, turn: ConversationTurn) -> None:
        """Append a turn to the end of a session's history."""
        try:
            self._histories[session_id].append(turn)
        except KeyError:
            raise UnknownSession(session_id) from None

    def windowed_view(self, session_id: str) -> List[ConversationTurn]:
        """The system turn followed by the most recent non-system turns."""
        history = self._histories.get(session_id)
        if history is None:
            raise UnknownSession(session_id)
        return [history[0]] + history[1:][-self.replay_window:]

    def history(self, session_id: str) -> List[ConversationTurn]:
        """Copy of the full stored history."""
        if session_id not in self._histories:
            raise UnknownSession(session_id)
        return list(self._histories[session_id])

    def session_ids(self) -> Iterator[str]:
        return iter(list(self._histories))

    def clear(self) -> None:
        self._histories.clear()
        self._locks.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._histories

    def __len__(self) -> int:
        return len(self._histories)
