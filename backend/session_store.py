# session_store.py — Per-user assistant conversation history
# Process-local and lost on restart. Bounded in both directions: at most
# max_sessions users (least recently used evicted first) and max_messages
# messages per user; idle sessions expire after ttl_seconds.

import os
import threading
import time
from collections import OrderedDict
from typing import Callable, Dict, List

from fastapi import Request

ASSISTANT_HISTORY_TTL_SECONDS = int(os.getenv("ASSISTANT_HISTORY_TTL_SECONDS", "1800"))
ASSISTANT_MAX_SESSIONS = int(os.getenv("ASSISTANT_MAX_SESSIONS", "1000"))
ASSISTANT_MAX_MESSAGES = 4


class ConversationStore:
    def __init__(
        self,
        max_sessions: int = ASSISTANT_MAX_SESSIONS,
        ttl_seconds: int = ASSISTANT_HISTORY_TTL_SECONDS,
        max_messages: int = ASSISTANT_MAX_MESSAGES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_sessions = max_sessions
        self.ttl_seconds = ttl_seconds
        self.max_messages = max_messages
        self._clock = clock
        self._sessions: "OrderedDict[str, tuple]" = OrderedDict()
        self._lock = threading.Lock()

    def _expired(self, touched_at: float) -> bool:
        return self._clock() - touched_at > self.ttl_seconds

    def get(self, user_id: str) -> List[Dict[str, str]]:
        with self._lock:
            item = self._sessions.get(user_id)
            if item is None:
                return []
            touched_at, messages = item
            if self._expired(touched_at):
                del self._sessions[user_id]
                return []
            return list(messages)

    def set(self, user_id: str, messages: List[Dict[str, str]]) -> None:
        with self._lock:
            self._sessions[user_id] = (self._clock(), list(messages)[-self.max_messages:])
            self._sessions.move_to_end(user_id)
            self._prune()

    def append(self, user_id: str, *messages: Dict[str, str]) -> List[Dict[str, str]]:
        history = self.get(user_id) + list(messages)
        self.set(user_id, history)
        return history[-self.max_messages:]

    def clear(self, user_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(user_id, None) is not None

    def _prune(self) -> None:
        for key in [k for k, (t, _) in self._sessions.items() if self._expired(t)]:
            del self._sessions[key]
        while len(self._sessions) > self.max_sessions:
            self._sessions.popitem(last=False)

    def __len__(self) -> int:
        return len(self._sessions)


def get_conversation_store(request: Request) -> ConversationStore:
    """FastAPI dependency. The store is created in the app lifespan."""
    return request.app.state.conversation_store
