"""
Real-time wire protocol.

Server frames are tagged by ``event``; client frames are tagged by ``type``.
Both sides are closed unions so the relay and the socket handler can dispatch
exhaustively.
"""
from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from app.domains.collaboration.entities import VoiceStateChange
from app.domains.collaboration.schemas import (
    CamelModel,
    Cursor,
    ParticipantOut,
    SessionOut,
    VoiceStateOut,
)


# Server -> client relay events

class CodeUpdateEvent(CamelModel):
    event: Literal["code-update"] = "code-update"
    code: str
    cursor: Optional[Cursor] = None
    participant_id: str
    participant_name: str


class CursorUpdateEvent(CamelModel):
    event: Literal["cursor-update"] = "cursor-update"
    cursor: Cursor
    participant_id: str


class ParticipantJoinedEvent(CamelModel):
    event: Literal["participant-joined"] = "participant-joined"
    participant: ParticipantOut
    session: SessionOut


class ParticipantLeftEvent(CamelModel):
    event: Literal["participant-left"] = "participant-left"
    participant_id: str
    participant_name: Optional[str] = None
    session: SessionOut


class ParticipantUpdateEvent(CamelModel):
    event: Literal["participant-update"] = "participant-update"
    participant: ParticipantOut


class NewMessageEvent(CamelModel):
    event: Literal["new-message"] = "new-message"
    id: str
    session_id: str
    participant_id: str
    participant_name: str
    content: str
    timestamp: datetime


class UserTypingEvent(CamelModel):
    event: Literal["user-typing"] = "user-typing"
    participant_id: str
    participant_name: str
    is_typing: bool


class VoiceOfferEvent(CamelModel):
    event: Literal["voice-offer"] = "voice-offer"
    participant_id: str
    target_participant_id: str
    offer: Any


class VoiceAnswerEvent(CamelModel):
    event: Literal["voice-answer"] = "voice-answer"
    participant_id: str
    target_participant_id: str
    answer: Any


class VoiceIceCandidateEvent(CamelModel):
    event: Literal["voice-ice-candidate"] = "voice-ice-candidate"
    participant_id: str
    target_participant_id: str
    candidate: Any


class VoiceStateChangeEvent(CamelModel):
    event: Literal["voice-state-change"] = "voice-state-change"
    participant_id: str
    state: VoiceStateChange
    voice_state: VoiceStateOut


RelayEvent = Annotated[
    Union[
        CodeUpdateEvent,
        CursorUpdateEvent,
        ParticipantJoinedEvent,
        ParticipantLeftEvent,
        ParticipantUpdateEvent,
        NewMessageEvent,
        UserTypingEvent,
        VoiceOfferEvent,
        VoiceAnswerEvent,
        VoiceIceCandidateEvent,
        VoiceStateChangeEvent,
    ],
    Field(discriminator="event"),
]


# Client -> server actions

class JoinSessionAction(CamelModel):
    type: Literal["join-session"]
    session_id: str = Field(min_length=1)


class LeaveSessionAction(CamelModel):
    type: Literal["leave-session"]


class CodeChangeAction(CamelModel):
    type: Literal["code-change"]
    code: str
    cursor: Optional[Cursor] = None


class CursorUpdateAction(CamelModel):
    type: Literal["cursor-update"]
    cursor: Cursor


class SendMessageAction(CamelModel):
    type: Literal["send-message"]
    message: str


class TypingAction(CamelModel):
    type: Literal["typing-start", "typing-stop"]


class VoiceOfferAction(CamelModel):
    type: Literal["voice-offer"]
    target_participant_id: str
    offer: Any


class VoiceAnswerAction(CamelModel):
    type: Literal["voice-answer"]
    target_participant_id: str
    answer: Any


class VoiceIceCandidateAction(CamelModel):
    type: Literal["voice-ice-candidate"]
    target_participant_id: str
    candidate: Any


class VoiceStateAction(CamelModel):
    type: Literal["voice-state-change"]
    state: VoiceStateChange


class PingAction(CamelModel):
    type: Literal["ping"]


class PongAction(CamelModel):
    type: Literal["pong"]


ClientAction = Annotated[
    Union[
        JoinSessionAction,
        LeaveSessionAction,
        CodeChangeAction,
        CursorUpdateAction,
        SendMessageAction,
        TypingAction,
        VoiceOfferAction,
        VoiceAnswerAction,
        VoiceIceCandidateAction,
        VoiceStateAction,
        PingAction,
        PongAction,
    ],
    Field(discriminator="type"),
]

client_action_adapter = TypeAdapter(ClientAction)
