from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"


class Permission(str, Enum):
    READ = "read"
    WRITE = "write"


class VoiceStateChange(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    MUTED = "muted"
    UNMUTED = "unmuted"
    DEAFENED = "deafened"
    UNDEAFENED = "undeafened"


class SessionEventType(str, Enum):
    CODE_UPDATE = "code_update"
    PARTICIPANT_JOIN = "participant_join"
    PARTICIPANT_LEAVE = "participant_leave"
    CHAT_MESSAGE = "chat_message"
    VOICE_STATE_CHANGE = "voice_state_change"
    PERMISSION_CHANGE = "permission_change"


@dataclass
class CallerIdentity:
    """Authenticated account behind a request or socket"""
    user_id: str
    name: str
    role: Optional[str] = None


@dataclass
class CursorPosition:
    line: int
    column: int


@dataclass
class Participant:
    id: str
    user_id: str
    name: str
    color: str
    joined_at: datetime
    is_active: bool = True
    permission: Permission = Permission.WRITE
    cursor: Optional[CursorPosition] = None

    def can_write(self) -> bool:
        return self.permission == Permission.WRITE


@dataclass
class ChatMessage:
    id: str
    session_id: str
    participant_id: str
    participant_name: str
    content: str
    timestamp: datetime


@dataclass
class VoiceState:
    participant_id: str
    is_connected: bool = False
    is_muted: bool = False
    is_deafened: bool = False

    def apply(self, change: VoiceStateChange):
        if change == VoiceStateChange.CONNECTED:
            self.is_connected = True
        elif change == VoiceStateChange.DISCONNECTED:
            self.is_connected = False
        elif change == VoiceStateChange.MUTED:
            self.is_muted = True
        elif change == VoiceStateChange.UNMUTED:
            self.is_muted = False
        elif change == VoiceStateChange.DEAFENED:
            self.is_deafened = True
        elif change == VoiceStateChange.UNDEAFENED:
            self.is_deafened = False


@dataclass
class Session:
    id: str
    host_id: str
    language: Language
    code: str
    created_at: datetime
    last_activity: datetime
    participants: List[Participant] = field(default_factory=list)
    messages: List[ChatMessage] = field(default_factory=list)
    voice_states: List[VoiceState] = field(default_factory=list)

    def find_participant(self, participant_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.id == participant_id:
                return participant
        return None

    def find_participant_by_user(self, user_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.user_id == user_id:
                return participant
        return None

    def active_participants(self) -> List[Participant]:
        return [p for p in self.participants if p.is_active]

    def voice_state_for(self, participant_id: str) -> VoiceState:
        for state in self.voice_states:
            if state.participant_id == participant_id:
                return state
        state = VoiceState(participant_id=participant_id)
        self.voice_states.append(state)
        return state

    def touch(self, now: datetime):
        self.last_activity = now


@dataclass
class SessionEvent:
    type: SessionEventType
    session_id: str
    participant_id: str
    timestamp: datetime
    data: Dict[str, Any] = field(default_factory=dict)
