# app/domains/collaboration/repository.py
"""
Session store.

The lifecycle manager is the only writer; it serializes access per session,
so implementations do not need their own locking.
"""
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from pydantic import TypeAdapter
from redis.asyncio import Redis

from app.domains.collaboration.entities import Session, SessionEvent
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

_session_adapter = TypeAdapter(Session)
_event_adapter = TypeAdapter(SessionEvent)


class SessionRepository(ABC):
    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def save(self, session: Session) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        """Remove a session together with its event history"""

    @abstractmethod
    async def list_sessions(self) -> List[Session]:
        ...

    @abstractmethod
    async def append_event(self, event: SessionEvent, limit: int) -> None:
        """Append to the session history, keeping only the newest ``limit`` entries"""

    @abstractmethod
    async def get_events(self, session_id: str) -> List[SessionEvent]:
        ...

    async def ping(self) -> bool:
        return True


class InMemorySessionRepository(SessionRepository):
    """Process-local store. State is lost on restart and not shared between workers."""

    def __init__(self):
        self.sessions: Dict[str, Session] = {}
        self.events: Dict[str, List[SessionEvent]] = {}

    async def get(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    async def save(self, session: Session) -> None:
        self.sessions[session.id] = session
        self.events.setdefault(session.id, [])

    async def delete(self, session_id: str) -> bool:
        self.events.pop(session_id, None)
        return self.sessions.pop(session_id, None) is not None

    async def list_sessions(self) -> List[Session]:
        return list(self.sessions.values())

    async def append_event(self, event: SessionEvent, limit: int) -> None:
        history = self.events.setdefault(event.session_id, [])
        history.append(event)
        if limit > 0 and len(history) > limit:
            del history[: len(history) - limit]

    async def get_events(self, session_id: str) -> List[SessionEvent]:
        return list(self.events.get(session_id, []))


class RedisSessionRepository(SessionRepository):
    """Redis-backed store so several processes see the same sessions.

    Room membership and fan-out remain per process: a socket only receives
    events published by the worker it is connected to.
    """

    def __init__(self, client: Redis, prefix: str = "collab"):
        self.client = client
        self.prefix = prefix

    def _session_key(self, session_id: str) -> str:
        return f"{self.prefix}:session:{session_id}"

    def _events_key(self, session_id: str) -> str:
        return f"{self.prefix}:events:{session_id}"

    @property
    def _index_key(self) -> str:
        return f"{self.prefix}:sessions"

    async def get(self, session_id: str) -> Optional[Session]:
        raw = await self.client.get(self._session_key(session_id))
        if raw is None:
            return None
        return _session_adapter.validate_json(raw)

    async def save(self, session: Session) -> None:
        payload = _session_adapter.dump_json(session).decode("utf-8")
        await self.client.set(self._session_key(session.id), payload)
        await self.client.sadd(self._index_key, session.id)

    async def delete(self, session_id: str) -> bool:
        removed = await self.client.delete(self._session_key(session_id), self._events_key(session_id))
        await self.client.srem(self._index_key, session_id)
        return bool(removed)

    async def list_sessions(self) -> List[Session]:
        session_ids = sorted(await self.client.smembers(self._index_key))
        sessions: List[Session] = []
        for session_id in session_ids:
            session = await self.get(session_id)
            if session is None:
                # Index entry outlived its session (e.g. deleted by another worker)
                await self.client.srem(self._index_key, session_id)
                continue
            sessions.append(session)
        return sessions

    async def append_event(self, event: SessionEvent, limit: int) -> None:
        key = self._events_key(event.session_id)
        await self.client.rpush(key, _event_adapter.dump_json(event).decode("utf-8"))
        if limit > 0:
            await self.client.ltrim(key, -limit, -1)

    async def get_events(self, session_id: str) -> List[SessionEvent]:
        raw_events = await self.client.lrange(self._events_key(session_id), 0, -1)
        return [_event_adapter.validate_json(raw) for raw in raw_events]

    async def ping(self) -> bool:
        try:
            await self.client.ping()
            return True
        except Exception as e:
            logger.warning(f"Redis session store unreachable: {e}")
            return False
