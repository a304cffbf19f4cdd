# app/domains/collaboration/schemas.py
"""
Wire models for the collaboration REST surface.

Entities are plain dataclasses; these models read them through
``from_attributes`` and serialize with camelCase keys for the web client.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.domains.collaboration.entities import Language, Permission, SessionEventType


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Cursor(CamelModel):
    line: int = Field(ge=0)
    column: int = Field(ge=0)


class ParticipantOut(CamelModel):
    id: str
    user_id: str
    name: str
    color: str
    is_active: bool
    permission: Permission
    cursor: Optional[Cursor] = None
    joined_at: datetime


class ChatMessageOut(CamelModel):
    id: str
    session_id: str
    participant_id: str
    participant_name: str
    content: str
    timestamp: datetime


class VoiceStateOut(CamelModel):
    participant_id: str
    is_connected: bool
    is_muted: bool
    is_deafened: bool


class SessionOut(CamelModel):
    id: str
    host_id: str
    language: Language
    code: str
    participants: List[ParticipantOut]
    messages: List[ChatMessageOut]
    voice_states: List[VoiceStateOut]
    created_at: datetime
    last_activity: datetime


class SessionEventOut(CamelModel):
    type: SessionEventType
    session_id: str
    participant_id: str
    data: Dict[str, Any]
    timestamp: datetime


# Requests

class CreateSessionRequest(CamelModel):
    # Plain str: an unsupported language is reported by the service as InvalidArgument
    language: str
    initial_code: Optional[str] = None


class JoinSessionRequest(CamelModel):
    session_id: str = Field(min_length=1)


class UpdateCodeRequest(CamelModel):
    session_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    code: str
    cursor: Optional[Cursor] = None


class LeaveSessionRequest(CamelModel):
    session_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)


class SendMessageRequest(CamelModel):
    session_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    message: str

    @field_validator("message")
    @classmethod
    def validate_message(cls, v):
        if not v.strip():
            raise ValueError("Message cannot be empty")
        return v


class SetPermissionRequest(CamelModel):
    session_id: str = Field(min_length=1)
    participant_id: str = Field(min_length=1)
    permission: Permission


# Responses

class SuccessResponse(CamelModel):
    success: bool = True


class CreateSessionResponse(SuccessResponse):
    session_id: str


class SessionResponse(SuccessResponse):
    session: SessionOut


class JoinSessionResponse(SessionResponse):
    participant_id: str


class MessageResponse(SuccessResponse):
    message: ChatMessageOut


class ValidateSessionResponse(SuccessResponse):
    session_id: str
    language: Language
    participant_count: int
    active_participants: int


class SessionEventsResponse(SuccessResponse):
    events: List[SessionEventOut]
