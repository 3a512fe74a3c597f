"""
In-memory store of live call sessions. session_id is generated on the backend.

Nothing is persisted: a session's transcript lives until it is removed or the
process exits. An asyncio.Lock guards the registry itself; each session guards
its own state.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable

from app.session import CallSession

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], CallSession]


def generate_session_id() -> str:
    """Generate a new session_id (UUID hex, 12 chars). Backend only."""
    return uuid.uuid4().hex[:12]


class SessionStore:
    def __init__(self, factory: SessionFactory, max_sessions: int = 0) -> None:
        """max_sessions: 0 = unlimited."""
        self._factory = factory
        self._max_sessions = max_sessions
        self._sessions: dict[str, CallSession] = {}
        self._lock = asyncio.Lock()

    async def create(self, session_id: str | None = None) -> CallSession:
        async with self._lock:
            session_id = session_id or generate_session_id()
            if session_id in self._sessions:
                raise RuntimeError(f"Session {session_id} already exists")
            if self._max_sessions and len(self._sessions) >= self._max_sessions:
                raise RuntimeError(f"Max sessions ({self._max_sessions}) reached")
            session = self._factory(session_id)
            self._sessions[session_id] = session
            logger.info("Session %s created", session_id)
            return session

    async def get(self, session_id: str) -> CallSession | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> bool:
        """Close and forget a session. Return True if it existed."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            await session.close()

    def __len__(self) -> int:
        return len(self._sessions)
