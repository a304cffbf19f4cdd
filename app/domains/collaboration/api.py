# app/domains/collaboration/api.py
from fastapi import APIRouter, Depends

from app.domains.auth.dependencies import get_current_user
from app.domains.collaboration.dependencies import get_session_manager
from app.domains.collaboration.entities import CallerIdentity, CursorPosition
from app.domains.collaboration.schemas import (
    ChatMessageOut,
    CreateSessionRequest,
    CreateSessionResponse,
    JoinSessionRequest,
    JoinSessionResponse,
    LeaveSessionRequest,
    MessageResponse,
    SendMessageRequest,
    SessionEventOut,
    SessionEventsResponse,
    SessionOut,
    SessionResponse,
    SetPermissionRequest,
    SuccessResponse,
    UpdateCodeRequest,
    ValidateSessionResponse,
)
from app.domains.collaboration.service import SessionLifecycleManager

router = APIRouter()


@router.post("/create", response_model=CreateSessionResponse)
async def create_session(
        request: CreateSessionRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """Create a session with the caller as host and sole participant"""
    session = await manager.create_session(request.language, user, initial_code=request.initial_code)
    return CreateSessionResponse(session_id=session.id)


@router.post("/join", response_model=JoinSessionResponse)
async def join_session(
        request: JoinSessionRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    session, participant_id = await manager.join_session(request.session_id, user)
    return JoinSessionResponse(session=SessionOut.model_validate(session), participant_id=participant_id)


@router.post("/update", response_model=SessionResponse)
async def update_code(
        request: UpdateCodeRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """Replace the shared code; the last write received wins"""
    cursor = CursorPosition(**request.cursor.model_dump()) if request.cursor else None
    session = await manager.update_code(
        request.session_id, request.participant_id, user, request.code, cursor=cursor
    )
    return SessionResponse(session=SessionOut.model_validate(session))


@router.post("/leave", response_model=SuccessResponse)
async def leave_session(
        request: LeaveSessionRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    await manager.leave_session(request.session_id, request.participant_id, user)
    return SuccessResponse()


@router.post("/message", response_model=MessageResponse)
async def send_message(
        request: SendMessageRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    message = await manager.send_message(request.session_id, request.participant_id, user, request.message)
    return MessageResponse(message=ChatMessageOut.model_validate(message))


@router.post("/permission", response_model=SessionResponse)
async def set_permission(
        request: SetPermissionRequest,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """Host-only: switch a participant between read and write"""
    session = await manager.set_permission(request.session_id, request.participant_id, user, request.permission)
    return SessionResponse(session=SessionOut.model_validate(session))


@router.get("/validate/{session_id}", response_model=ValidateSessionResponse)
async def validate_session(
        session_id: str,
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    """Public check used by invite links before the visitor signs in"""
    session = await manager.validate_session(session_id)
    return ValidateSessionResponse(
        session_id=session.id,
        language=session.language,
        participant_count=len(session.participants),
        active_participants=len(session.active_participants()),
    )


@router.get("/{session_id}/events", response_model=SessionEventsResponse)
async def get_session_events(
        session_id: str,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    events = await manager.get_events(session_id, user)
    return SessionEventsResponse(events=[SessionEventOut.model_validate(e) for e in events])


@router.get("/{session_id}", response_model=JoinSessionResponse)
async def get_session(
        session_id: str,
        user: CallerIdentity = Depends(get_current_user),
        manager: SessionLifecycleManager = Depends(get_session_manager),
):
    session, participant_id = await manager.get_session(session_id, user)
    return JoinSessionResponse(session=SessionOut.model_validate(session), participant_id=participant_id)
