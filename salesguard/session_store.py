from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Deque, Dict, List, Optional

from .governance import CommercialState
from .signals import Preferences

logger = logging.getLogger("salesguard.sessions")


@dataclass
class CustomerContext:
    """Preferences accumulated across turns; only a new explicit value overwrites."""
    furniture_type: Optional[str] = None
    material: Optional[str] = None
    min_seats: Optional[int] = None

    def merge(self, preferences: Preferences) -> List[str]:
        changed: List[str] = []
        if preferences.furniture_type and preferences.furniture_type != self.furniture_type:
            self.furniture_type = preferences.furniture_type
            changed.append("furniture_type")
        if preferences.material and preferences.material != self.material:
            self.material = preferences.material
            changed.append("material")
        if preferences.min_seats and preferences.min_seats != self.min_seats:
            self.min_seats = preferences.min_seats
            changed.append("min_seats")
        return changed

    def known(self) -> Dict[str, object]:
        values = {
            "furniture_type": self.furniture_type,
            "min_seats": self.min_seats,
            "material": self.material,
        }
        return {key: value for key, value in values.items() if value is not None}


@dataclass
class Session:
    session_id: str
    history_limit: int = 8
    message_count: int = 0
    context: CustomerContext = field(default_factory=CustomerContext)
    whitelist: List[str] = field(default_factory=list)
    history: Deque[Dict[str, str]] = field(default_factory=deque)
    transcript: List[Dict[str, str]] = field(default_factory=list)
    customer_email: Optional[str] = None
    customer_postcode: Optional[str] = None
    commercial: CommercialState = field(default_factory=CommercialState)
    escalated: bool = False
    last_active: float = 0.0
    in_use: int = 0
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self.history = deque(self.history, maxlen=max(self.history_limit, 0))

    def replace_whitelist(self, skus: List[str]) -> None:
        # Each search replaces the previous whitelist outright.
        self.whitelist = list(dict.fromkeys(skus))

    def add_exchange(self, user_text: str, assistant_text: str) -> None:
        for role, content in (("user", user_text), ("assistant", assistant_text)):
            entry = {"role": role, "content": content}
            self.history.append(entry)
            self.transcript.append(entry)


class SessionStore(ABC):
    """Storage boundary for chat sessions."""

    @abstractmethod
    def get(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    @abstractmethod
    def get_or_create(self, session_id: str) -> Session:
        raise NotImplementedError

    @abstractmethod
    def sweep(self, now: Optional[float] = None) -> int:
        raise NotImplementedError

    @abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError

    @asynccontextmanager
    async def checkout(self, session_id: str) -> AsyncIterator[Session]:
        """Purpose: Hold a session exclusively for the duration of one turn.
        Inputs/Outputs: Input is the session id; yields the locked Session.
        Side Effects / State: Creates the session lazily, bumps its in-use counter
            and refreshes its activity time on entry and exit.
        Dependencies: get_or_create and the per-session asyncio.Lock.
        Failure Modes: Exceptions inside the block propagate after the lock and the
            in-use counter are released.
        If Removed: Concurrent turns for one session could validate against a
            whitelist from another search.
        Testing Notes: Two concurrent checkouts for one id must not overlap.
        """
        # Mark in-use before waiting so the sweeper never evicts a queued session.
        session = self.get_or_create(session_id)
        session.in_use += 1
        try:
            async with session.lock:
                self._touch(session)
                yield session
        finally:
            session.in_use -= 1
            self._touch(session)

    def _touch(self, session: Session) -> None:
        session.last_active = time.monotonic()


class InMemorySessionStore(SessionStore):
    """Process-local session map with idle eviction and an optional size cap."""

    def __init__(
        self,
        history_limit: int = 8,
        idle_seconds: float = 1800.0,
        max_sessions: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._history_limit = history_limit
        self._idle_seconds = idle_seconds
        self._max_sessions = max_sessions
        self._clock = clock
        self._sessions: Dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def _touch(self, session: Session) -> None:
        session.last_active = self._clock()

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def get_or_create(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, history_limit=self._history_limit)
            self._touch(session)
            self._sessions[session_id] = session
            logger.debug("session created id=%s", session_id)
        return session

    def _idle(self, session: Session) -> bool:
        return session.in_use == 0 and not session.lock.locked()

    def sweep(self, now: Optional[float] = None) -> int:
        """Purpose: Evict idle sessions and enforce the optional session cap.
        Inputs/Outputs: Input is an optional clock reading; output is the eviction count.
        Side Effects / State: Removes sessions from the in-memory map.
        Dependencies: Session.in_use and Session.lock to skip active sessions.
        Failure Modes: None; sessions in use are never evicted, even past the cap.
        If Removed: Abandoned sessions accumulate for the process lifetime.
        Testing Notes: Advance a fake clock beyond idle_seconds and assert eviction.
        """
        # Expire by inactivity first, then prune least-recently-active idle sessions.
        current = self._clock() if now is None else now
        expired = [
            sid
            for sid, session in self._sessions.items()
            if self._idle(session) and current - session.last_active >= self._idle_seconds
        ]
        for sid in expired:
            self._sessions.pop(sid, None)

        pruned = 0
        if self._max_sessions and self._max_sessions > 0 and len(self._sessions) > self._max_sessions:
            overflow = len(self._sessions) - self._max_sessions
            idle = sorted(
                (s for s in self._sessions.values() if self._idle(s)),
                key=lambda s: s.last_active,
            )
            for session in idle[:overflow]:
                self._sessions.pop(session.session_id, None)
                pruned += 1

        if expired or pruned:
            logger.info("session sweep expired=%d pruned=%d remaining=%d", len(expired), pruned, len(self._sessions))
        return len(expired) + pruned


async def run_sweeper(store: SessionStore, interval_seconds: float) -> None:
    """Sweep the store forever; cancelled by the app lifespan on shutdown."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            store.sweep()
        except Exception:
            logger.exception("session sweep failed")
