# app/domains/collaboration/service.py
"""
Session lifecycle: create, join, edit, chat, signal, leave and reap.

Every mutation of the session store goes through ``SessionLifecycleManager``.
A per-session lock is held across read-modify-write and the relay publish, so
mutations of one session and their broadcasts happen in server-receipt order.
"""
import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from app.core.event_bus import EventBus
from app.core.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from app.domains.collaboration.colors import ColorAssigner
from app.domains.collaboration.entities import (
    CallerIdentity,
    ChatMessage,
    CursorPosition,
    Language,
    Participant,
    Permission,
    Session,
    SessionEvent,
    SessionEventType,
    VoiceStateChange,
)
from app.domains.collaboration.merge import DocumentMerge, LastWriteWins
from app.domains.collaboration.relay import RELAY_TOPIC, Delivery
from app.domains.collaboration.repository import SessionRepository
from app.domains.collaboration.schemas import (
    ChatMessageOut,
    Cursor,
    ParticipantOut,
    SessionOut,
    VoiceStateOut,
)
from app.domains.collaboration.templates import get_default_code
from app.shared.schemas.events import (
    CodeUpdateEvent,
    CursorUpdateEvent,
    NewMessageEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    ParticipantUpdateEvent,
    UserTypingEvent,
    VoiceAnswerEvent,
    VoiceIceCandidateEvent,
    VoiceOfferEvent,
    VoiceStateChangeEvent,
)
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

SIGNAL_EVENTS = {
    "voice-offer": (VoiceOfferEvent, "offer"),
    "voice-answer": (VoiceAnswerEvent, "answer"),
    "voice-ice-candidate": (VoiceIceCandidateEvent, "candidate"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class SessionLifecycleManager:
    def __init__(
            self,
            repository: SessionRepository,
            bus: EventBus,
            colors: ColorAssigner,
            merge: Optional[DocumentMerge] = None,
            default_permission: Permission = Permission.WRITE,
            idle_timeout: timedelta = timedelta(hours=1),
            skip_active_on_reap: bool = False,
            max_message_length: int = 2000,
            event_history_limit: int = 500,
            clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.bus = bus
        self.colors = colors
        self.merge = merge or LastWriteWins()
        self.default_permission = Permission(default_permission)
        self.idle_timeout = idle_timeout
        self.skip_active_on_reap = skip_active_on_reap
        self.max_message_length = max_message_length
        self.event_history_limit = event_history_limit
        self.clock = clock
        self._locks: Dict[str, asyncio.Lock] = {}

    # Lookups

    async def _require_session(self, session_id: str) -> Session:
        session = await self.repository.get(session_id)
        if session is None:
            raise NotFoundError("Session not found")
        return session

    async def _lock_for(self, session_id: str) -> asyncio.Lock:
        """Per-session lock, only ever created for sessions the store knows"""
        lock = self._locks.get(session_id)
        if lock is None:
            await self._require_session(session_id)
            lock = self._locks.setdefault(session_id, asyncio.Lock())
        return lock

    @staticmethod
    def _require_own_participant(session: Session, participant_id: str, caller: CallerIdentity) -> Participant:
        participant = session.find_participant(participant_id)
        if participant is None or participant.user_id != caller.user_id:
            raise ForbiddenError("Not authorized to act as this participant")
        return participant

    async def _publish(self, session_id: str, event, sender_participant_id: Optional[str] = None):
        await self.bus.publish(
            RELAY_TOPIC,
            Delivery(session_id=session_id, event=event, sender_participant_id=sender_participant_id),
        )

    async def _record(
            self,
            session: Session,
            event_type: SessionEventType,
            participant_id: str,
            data: Optional[Dict[str, Any]] = None,
    ):
        event = SessionEvent(
            type=event_type,
            session_id=session.id,
            participant_id=participant_id,
            timestamp=self.clock(),
            data=data or {},
        )
        await self.repository.append_event(event, self.event_history_limit)

    # Operations

    async def create_session(
            self,
            language: str,
            caller: CallerIdentity,
            initial_code: Optional[str] = None,
    ) -> Session:
        try:
            language = Language(language)
        except ValueError:
            raise InvalidArgumentError("Invalid language specified")

        now = self.clock()
        host = Participant(
            id=_new_id("participant"),
            user_id=caller.user_id,
            name=caller.name,
            color=self.colors.next_color([]),
            joined_at=now,
            permission=Permission.WRITE,
        )
        session = Session(
            id=_new_id("collab"),
            host_id=caller.user_id,
            language=language,
            code=initial_code if initial_code else get_default_code(language),
            created_at=now,
            last_activity=now,
            participants=[host],
        )
        await self.repository.save(session)
        logger.info(f"Session {session.id} created by {caller.user_id} ({language.value})")
        return session

    async def join_session(self, session_id: str, caller: CallerIdentity) -> Tuple[Session, str]:
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            now = self.clock()

            participant = session.find_participant_by_user(caller.user_id)
            if participant is not None:
                participant.is_active = True
                participant.joined_at = now
            else:
                participant = Participant(
                    id=_new_id("participant"),
                    user_id=caller.user_id,
                    name=caller.name,
                    color=self.colors.next_color(session.participants),
                    joined_at=now,
                    permission=self.default_permission,
                )
                session.participants.append(participant)

            session.touch(now)
            await self.repository.save(session)
            await self._record(session, SessionEventType.PARTICIPANT_JOIN, participant.id, {"userName": caller.name})
            await self._publish(
                session.id,
                ParticipantJoinedEvent(
                    participant=ParticipantOut.model_validate(participant),
                    session=SessionOut.model_validate(session),
                ),
            )
            logger.info(f"{caller.user_id} joined session {session_id} as {participant.id}")
            return session, participant.id

    async def get_session(self, session_id: str, caller: CallerIdentity) -> Tuple[Session, str]:
        session = await self._require_session(session_id)
        participant = session.find_participant_by_user(caller.user_id)
        if participant is None:
            raise ForbiddenError("Not a participant in this session")
        return session, participant.id

    async def validate_session(self, session_id: str) -> Session:
        return await self._require_session(session_id)

    async def update_code(
            self,
            session_id: str,
            participant_id: str,
            caller: CallerIdentity,
            code: str,
            cursor: Optional[CursorPosition] = None,
    ) -> Session:
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            participant = self._require_own_participant(session, participant_id, caller)
            if not participant.can_write():
                raise ForbiddenError("Read-only access")

            session.code = self.merge.merge(session.code, code, participant.id)
            if cursor is not None:
                participant.cursor = cursor
            session.touch(self.clock())
            await self.repository.save(session)

            cursor_data = Cursor.model_validate(cursor) if cursor is not None else None
            await self._record(
                session,
                SessionEventType.CODE_UPDATE,
                participant.id,
                {"code": session.code, "cursor": cursor_data.model_dump() if cursor_data else None},
            )
            await self._publish(
                session.id,
                CodeUpdateEvent(
                    code=session.code,
                    cursor=cursor_data,
                    participant_id=participant.id,
                    participant_name=participant.name,
                ),
                sender_participant_id=participant.id,
            )
            return session

    async def update_cursor(
            self,
            session_id: str,
            participant_id: str,
            caller: CallerIdentity,
            cursor: CursorPosition,
    ):
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            participant = self._require_own_participant(session, participant_id, caller)
            participant.cursor = cursor
            # Cursor moves are advisory and do not count as activity
            await self.repository.save(session)
            await self._publish(
                session.id,
                CursorUpdateEvent(cursor=Cursor.model_validate(cursor), participant_id=participant.id),
                sender_participant_id=participant.id,
            )

    async def leave_session(self, session_id: str, participant_id: str, caller: CallerIdentity):
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            participant = self._require_own_participant(session, participant_id, caller)
            participant.is_active = False
            session.touch(self.clock())
            await self.repository.save(session)
            await self._record(session, SessionEventType.PARTICIPANT_LEAVE, participant.id, {"userName": caller.name})
            await self._publish(
                session.id,
                ParticipantLeftEvent(
                    participant_id=participant.id,
                    participant_name=participant.name,
                    session=SessionOut.model_validate(session),
                ),
            )
            logger.info(f"{participant.id} left session {session_id}")

    async def set_permission(
            self,
            session_id: str,
            target_participant_id: str,
            caller: CallerIdentity,
            permission: Permission,
    ) -> Session:
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            if session.host_id != caller.user_id:
                raise ForbiddenError("Only the session host can change permissions")
            participant = session.find_participant(target_participant_id)
            if participant is None:
                raise NotFoundError("Participant not found")

            participant.permission = Permission(permission)
            session.touch(self.clock())
            await self.repository.save(session)
            await self._record(
                session,
                SessionEventType.PERMISSION_CHANGE,
                participant.id,
                {"permission": participant.permission.value},
            )
            await self._publish(session.id, ParticipantUpdateEvent(participant=ParticipantOut.model_validate(participant)))
            return session

    async def send_message(
            self,
            session_id: str,
            participant_id: str,
            caller: CallerIdentity,
            content: str,
    ) -> ChatMessage:
        if not content or not content.strip():
            raise InvalidArgumentError("Message cannot be empty")
        if len(content) > self.max_message_length:
            raise InvalidArgumentError(f"Message exceeds {self.max_message_length} characters")

        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            participant = self._require_own_participant(session, participant_id, caller)
            now = self.clock()
            message = ChatMessage(
                id=_new_id("msg"),
                session_id=session.id,
                participant_id=participant.id,
                participant_name=participant.name,
                content=content,
                timestamp=now,
            )
            session.messages.append(message)
            session.touch(now)
            await self.repository.save(session)
            await self._record(session, SessionEventType.CHAT_MESSAGE, participant.id, {"messageId": message.id})
            await self._publish(
                session.id,
                NewMessageEvent(**ChatMessageOut.model_validate(message).model_dump()),
                sender_participant_id=participant.id,
            )
            return message

    async def set_typing(self, session_id: str, participant_id: str, caller: CallerIdentity, is_typing: bool):
        session = await self._require_session(session_id)
        participant = self._require_own_participant(session, participant_id, caller)
        async with await self._lock_for(session_id):
            await self._publish(
                session.id,
                UserTypingEvent(
                    participant_id=participant.id,
                    participant_name=participant.name,
                    is_typing=is_typing,
                ),
                sender_participant_id=participant.id,
            )

    async def update_voice_state(
            self,
            session_id: str,
            participant_id: str,
            caller: CallerIdentity,
            change: VoiceStateChange,
    ):
        async with await self._lock_for(session_id):
            session = await self._require_session(session_id)
            participant = self._require_own_participant(session, participant_id, caller)
            change = VoiceStateChange(change)
            state = session.voice_state_for(participant.id)
            state.apply(change)
            session.touch(self.clock())
            await self.repository.save(session)
            await self._record(session, SessionEventType.VOICE_STATE_CHANGE, participant.id, {"state": change.value})
            await self._publish(
                session.id,
                VoiceStateChangeEvent(
                    participant_id=participant.id,
                    state=change,
                    voice_state=VoiceStateOut.model_validate(state),
                ),
                sender_participant_id=participant.id,
            )

    async def relay_signal(
            self,
            session_id: str,
            participant_id: str,
            caller: CallerIdentity,
            kind: str,
            target_participant_id: str,
            payload: Any,
    ):
        """Forward an offer/answer/ICE candidate to exactly one peer; the payload is opaque"""
        if kind not in SIGNAL_EVENTS:
            raise InvalidArgumentError(f"Unknown signal type: {kind}")
        session = await self._require_session(session_id)
        participant = self._require_own_participant(session, participant_id, caller)
        if target_participant_id == participant.id:
            raise InvalidArgumentError("Cannot signal yourself")
        if session.find_participant(target_participant_id) is None:
            raise NotFoundError("Participant not found")

        event_class, field_name = SIGNAL_EVENTS[kind]
        event = event_class(
            participant_id=participant.id,
            target_participant_id=target_participant_id,
            **{field_name: payload},
        )
        async with await self._lock_for(session_id):
            await self._publish(session.id, event, sender_participant_id=participant.id)

    async def get_events(self, session_id: str, caller: CallerIdentity) -> List[SessionEvent]:
        await self.get_session(session_id, caller)
        return await self.repository.get_events(session_id)

    async def reap_idle_sessions(self, now: Optional[datetime] = None) -> List[str]:
        """Delete sessions idle for longer than the timeout. Room members are not notified."""
        now = now or self.clock()
        cutoff = now - self.idle_timeout
        removed: List[str] = []
        for session in await self.repository.list_sessions():
            if session.last_activity >= cutoff:
                continue
            if self.skip_active_on_reap and session.active_participants():
                continue
            try:
                lock = await self._lock_for(session.id)
            except NotFoundError:
                continue
            async with lock:
                # Re-read under the lock: a mutation may have landed since the scan
                current = await self.repository.get(session.id)
                if current is None:
                    self._locks.pop(session.id, None)
                    continue
                if current.last_activity >= cutoff:
                    continue
                if self.skip_active_on_reap and current.active_participants():
                    continue
                await self.repository.delete(session.id)
            self._locks.pop(session.id, None)
            removed.append(session.id)
            logger.info(f"Cleaned up inactive session: {session.id}")
        return removed
