"""Client sessions.

A client session stands in for one browser tab: it owns session-scoped storage,
the cart persisted there, and the auth coordinator subscribed for it. Ending a
session drops all of it; the same id afterwards starts from an empty cart.
Sessions nobody has used for a while are ended the same way.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

from auth import AuthCoordinator, ProfileStore
from cart import CartStore
from database import DocumentStore
from identity import IdentityProvider

logger = structlog.get_logger(__name__)


class SessionStorage:
    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


@dataclass
class ClientSession:
    session_id: str
    storage: SessionStorage
    cart: CartStore
    auth: AuthCoordinator
    last_seen: float = 0.0


class SessionRegistry:
    """Live client sessions keyed by session id.

    Sessions idle for ``idle_timeout`` seconds are ended, and when more than
    ``max_sessions`` are live the least recently used one is ended to make room.
    """

    def __init__(
        self,
        store: DocumentStore,
        provider: IdentityProvider,
        profiles: ProfileStore,
        idle_timeout: float = 1800,
        max_sessions: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self._store = store
        self._provider = provider
        self._profiles = profiles
        self._idle_timeout = idle_timeout
        self._max_sessions = max_sessions
        self._clock = clock
        # least recently used first
        self._sessions: "OrderedDict[str, ClientSession]" = OrderedDict()

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: str) -> ClientSession:
        now = self._clock()
        self._evict(now)
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_seen = now
            self._sessions.move_to_end(session_id)
            return session

        storage = SessionStorage()
        coordinator = AuthCoordinator(session_id, self._provider, self._store, self._profiles)
        session = ClientSession(session_id, storage, CartStore(storage), coordinator, last_seen=now)
        self._sessions[session_id] = session
        try:
            await coordinator.start()
        except Exception:
            self._sessions.pop(session_id, None)
            raise
        logger.debug("session_started", session_id=session_id)
        self._evict(now)
        return session

    def _evict(self, now: float) -> None:
        while self._sessions:
            session_id, session = next(iter(self._sessions.items()))
            idle = now - session.last_seen
            if idle < self._idle_timeout and len(self._sessions) <= self._max_sessions:
                break
            logger.info("session_evicted", session_id=session_id, idle_seconds=round(idle, 1))
            self.end(session_id)

    def end(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            if session.auth.user is not None:
                self._profiles.discard(session.auth.user.id)
            session.auth.stop()
        self._provider.forget_session(session_id)
        logger.info("session_ended", session_id=session_id)

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.auth.stop()
        self._sessions.clear()
        self._profiles.clear()
