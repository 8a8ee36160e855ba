from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager

from .states import ConversationState, Idle


class Session:
    def __init__(self, session_id: Hashable, state: ConversationState):
        self.session_id = session_id
        self.state = state


class SessionRegistry:
    """In-memory map of chat id -> conversation state.

    Events for one session are handled one at a time through that session's
    lock while other sessions proceed in parallel. A lock is dropped once its
    session is back to Idle and nobody else holds or waits for it, so idle
    chats cost nothing. State is lost on restart.
    """

    def __init__(self) -> None:
        self._states: dict[Hashable, ConversationState] = {}
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def get(self, session_id: Hashable) -> ConversationState:
        return self._states.get(session_id, Idle())

    def set(self, session_id: Hashable, state: ConversationState) -> None:
        if isinstance(state, Idle):
            self._states.pop(session_id, None)
        else:
            self._states[session_id] = state

    def reset(self, session_id: Hashable) -> None:
        self.set(session_id, Idle())

    def __len__(self) -> int:
        return len(self._states)

    @asynccontextmanager
    async def session(self, session_id: Hashable) -> AsyncIterator[Session]:
        """Hold the session's lock; the state assigned to the yielded object is stored on exit."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._users[session_id] = self._users.get(session_id, 0) + 1
        try:
            async with lock:
                sess = Session(session_id, self.get(session_id))
                try:
                    yield sess
                finally:
                    self.set(session_id, sess.state)
        finally:
            self._users[session_id] -= 1
            if not self._users[session_id]:
                del self._users[session_id]
                if session_id not in self._states:
                    del self._locks[session_id]

    @property
    def lock_count(self) -> int:
        return len(self._locks)
