# app/domains/collaboration/ws.py
import anyio
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.exceptions import AppError, InvalidArgumentError
from app.core.websocket_manager import ConnectionInfo, WebSocketManager
from app.domains.auth.dependencies import identity_from_token
from app.domains.collaboration.entities import CallerIdentity, CursorPosition
from app.domains.collaboration.service import SessionLifecycleManager
from app.shared.schemas.events import (
    CodeChangeAction,
    CursorUpdateAction,
    JoinSessionAction,
    LeaveSessionAction,
    PingAction,
    PongAction,
    SendMessageAction,
    TypingAction,
    VoiceAnswerAction,
    VoiceIceCandidateAction,
    VoiceOfferAction,
    VoiceStateAction,
    client_action_adapter,
)
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

ws_router = APIRouter()


def _error_frame(code: str, message: str, action: str | None = None) -> dict:
    frame = {"event": "error", "code": code, "message": message}
    if action:
        frame["action"] = action
    return frame


def _require_room(info: ConnectionInfo) -> tuple[str, str]:
    if not info.session_id or not info.participant_id:
        raise InvalidArgumentError("Join a session first")
    return info.session_id, info.participant_id


def _cursor(cursor) -> CursorPosition | None:
    return CursorPosition(line=cursor.line, column=cursor.column) if cursor is not None else None


async def _deactivate_if_last(
        session_id: str | None,
        participant_id: str | None,
        caller: CallerIdentity,
        connections: WebSocketManager,
        manager: SessionLifecycleManager,
):
    """Deactivate a participant once their last socket has left the room"""
    if not session_id or not participant_id:
        return
    if connections.participant_connected(session_id, participant_id):
        return
    try:
        await manager.leave_session(session_id, participant_id, caller)
    except AppError as e:
        # The session may have been reaped while the socket was open
        logger.debug(f"Skipping deactivation of {participant_id} in {session_id}: {e.message}")


async def _release(
        websocket: WebSocket,
        info: ConnectionInfo,
        caller: CallerIdentity,
        connections: WebSocketManager,
        manager: SessionLifecycleManager,
):
    session_id, participant_id = info.session_id, info.participant_id
    connections.leave_room(websocket)
    await _deactivate_if_last(session_id, participant_id, caller, connections, manager)


async def handle_action(
        websocket: WebSocket,
        data: dict,
        caller: CallerIdentity,
        connections: WebSocketManager,
        manager: SessionLifecycleManager,
):
    try:
        action = client_action_adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        connections.send(
            websocket,
            _error_frame("invalid_argument", first.get("msg", "Invalid message"), data.get("type")),
        )
        return

    info = connections.connection_info.get(websocket)
    if info is None:
        return

    try:
        if isinstance(action, PingAction):
            connections.send(websocket, {"event": "pong"})
        elif isinstance(action, PongAction):
            pass
        elif isinstance(action, JoinSessionAction):
            if info.session_id and info.session_id != action.session_id:
                await _release(websocket, info, caller, connections, manager)
            connections.join_room(websocket, action.session_id)
            try:
                _, participant_id = await manager.join_session(action.session_id, caller)
            except AppError:
                connections.leave_room(websocket)
                raise
            info.participant_id = participant_id
            connections.send(
                websocket,
                {"event": "room-joined", "sessionId": action.session_id, "participantId": participant_id},
            )
        elif isinstance(action, LeaveSessionAction):
            _require_room(info)
            await _release(websocket, info, caller, connections, manager)
        elif isinstance(action, CodeChangeAction):
            session_id, participant_id = _require_room(info)
            await manager.update_code(session_id, participant_id, caller, action.code, cursor=_cursor(action.cursor))
        elif isinstance(action, CursorUpdateAction):
            session_id, participant_id = _require_room(info)
            await manager.update_cursor(session_id, participant_id, caller, _cursor(action.cursor))
        elif isinstance(action, SendMessageAction):
            session_id, participant_id = _require_room(info)
            await manager.send_message(session_id, participant_id, caller, action.message)
        elif isinstance(action, TypingAction):
            session_id, participant_id = _require_room(info)
            await manager.set_typing(session_id, participant_id, caller, action.type == "typing-start")
        elif isinstance(action, (VoiceOfferAction, VoiceAnswerAction, VoiceIceCandidateAction)):
            session_id, participant_id = _require_room(info)
            if isinstance(action, VoiceOfferAction):
                payload = action.offer
            elif isinstance(action, VoiceAnswerAction):
                payload = action.answer
            else:
                payload = action.candidate
            await manager.relay_signal(
                session_id, participant_id, caller, action.type, action.target_participant_id, payload
            )
        elif isinstance(action, VoiceStateAction):
            session_id, participant_id = _require_room(info)
            await manager.update_voice_state(session_id, participant_id, caller, action.state)
        else:
            raise InvalidArgumentError(f"Unsupported action: {action.type}")
    except AppError as e:
        connections.send(websocket, _error_frame(e.code, e.message, action.type))


@ws_router.websocket("/ws")
async def collaboration_socket(websocket: WebSocket):
    caller = identity_from_token(websocket.query_params.get("token"))
    if caller is None:
        await websocket.close(code=4401)
        return

    connections: WebSocketManager = websocket.app.state.connections
    manager: SessionLifecycleManager = websocket.app.state.session_manager

    await connections.connect(websocket, caller.user_id, caller.name)
    try:
        while True:
            raw = await websocket.receive_text()
            data = connections.parse_message(websocket, raw)
            if data is None:
                continue
            await handle_action(websocket, data, caller, connections, manager)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for user {caller.user_id}: {e}")
    finally:
        info = connections.disconnect(websocket)
        if info is not None:
            # Runs to completion even when teardown cancels the handler
            with anyio.CancelScope(shield=True):
                await _deactivate_if_last(info.session_id, info.participant_id, caller, connections, manager)
