# app/core/websocket_manager.py
"""
Room-scoped WebSocket manager with heartbeat and ordered per-connection delivery.

Every connection owns a bounded outbox drained by a single writer task, so
frames reach a socket in the order they were enqueued. Enqueueing never
awaits; a slow socket only ever delays itself. Delivery is best-effort: no
acknowledgements, no replay, and a full outbox drops frames.
"""
import asyncio
import json
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.shared.utils.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionInfo:
    """Information about a WebSocket connection"""

    def __init__(self, websocket: WebSocket, user_id: str, user_name: str, max_queue_size: int):
        self.websocket = websocket
        self.user_id = user_id
        self.user_name = user_name
        self.session_id: Optional[str] = None
        self.participant_id: Optional[str] = None
        self.connected_at = _utcnow()
        self.last_seen = _utcnow()
        self.outbox: asyncio.Queue = asyncio.Queue(maxsize=max_queue_size)
        self.writer: Optional[asyncio.Task] = None
        self.dropped = 0
        self.is_alive = True

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_seen = _utcnow()
        self.is_alive = True


class WebSocketManager:
    def __init__(
            self,
            ping_interval: float = 30,
            pong_timeout: float = 10,
            max_message_size: int = 1048576,
            max_queue_size: int = 256,
    ):
        self.rooms: Dict[str, List[WebSocket]] = {}
        self.connection_info: Dict[WebSocket, ConnectionInfo] = {}

        # Configuration
        self.ping_interval = ping_interval
        self.pong_timeout = pong_timeout
        self.max_message_size = max_message_size
        self.max_queue_size = max_queue_size

        self._tasks: list[asyncio.Task] = []
        self._started: bool = False

    async def start(self):
        """Start background maintenance tasks (must be called inside a running event loop)"""
        if self._started:
            return
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._heartbeat_loop(), name="ws-heartbeat"),
        ]
        self._started = True
        logger.info("WebSocketManager background tasks started")

    async def stop(self):
        """Stop background tasks gracefully"""
        if not self._started:
            return
        for t in self._tasks:
            t.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._started = False
        logger.info("WebSocketManager background tasks stopped")

    async def connect(self, websocket: WebSocket, user_id: str, user_name: str) -> ConnectionInfo:
        """Accept the socket and start its writer"""
        await websocket.accept()
        info = ConnectionInfo(websocket, user_id, user_name, self.max_queue_size)
        info.writer = asyncio.get_running_loop().create_task(
            self._writer_loop(info), name=f"ws-writer-{user_id}"
        )
        self.connection_info[websocket] = info
        logger.info(f"WebSocket connected: user={user_id}")
        return info

    def join_room(self, websocket: WebSocket, session_id: str) -> Optional[ConnectionInfo]:
        """Place a connection in a session room, leaving any previous room"""
        info = self.connection_info.get(websocket)
        if not info:
            return None
        if info.session_id and info.session_id != session_id:
            self.leave_room(websocket)
        room = self.rooms.setdefault(session_id, [])
        if websocket not in room:
            room.append(websocket)
        info.session_id = session_id
        return info

    def leave_room(self, websocket: WebSocket) -> Optional[str]:
        info = self.connection_info.get(websocket)
        if not info or not info.session_id:
            return None
        session_id = info.session_id
        room = self.rooms.get(session_id)
        if room is not None:
            if websocket in room:
                room.remove(websocket)
            if not room:
                del self.rooms[session_id]
        info.session_id = None
        info.participant_id = None
        return session_id

    def disconnect(self, websocket: WebSocket) -> Optional[ConnectionInfo]:
        """Forget a connection; returns its info so the caller can clean up domain state"""
        info = self.connection_info.get(websocket)
        if not info:
            return None

        session_id, participant_id = info.session_id, info.participant_id
        self.leave_room(websocket)
        # leave_room clears these, the caller still needs them
        info.session_id, info.participant_id = session_id, participant_id

        if info.writer and not info.writer.done():
            info.writer.cancel()
        del self.connection_info[websocket]

        logger.info(f"WebSocket disconnected: user={info.user_id}, session={session_id}")
        return info

    def participant_connected(
            self,
            session_id: str,
            participant_id: str,
            exclude: Optional[WebSocket] = None,
    ) -> bool:
        for connection in self.rooms.get(session_id, []):
            if connection is exclude:
                continue
            info = self.connection_info.get(connection)
            if info and info.participant_id == participant_id:
                return True
        return False

    def send(self, websocket: WebSocket, message: dict) -> bool:
        """Queue a frame for one connection"""
        info = self.connection_info.get(websocket)
        if not info or not info.is_alive:
            return False
        try:
            info.outbox.put_nowait(message)
            return True
        except asyncio.QueueFull:
            info.dropped += 1
            logger.warning(f"Outbox full for user {info.user_id}, dropped {message.get('event')}")
            return False

    def broadcast(
            self,
            session_id: str,
            message: dict,
            exclude_participants: Optional[Set[str]] = None,
    ) -> int:
        """Queue a frame for every connection in a room; returns how many accepted it"""
        delivered = 0
        for connection in list(self.rooms.get(session_id, [])):
            info = self.connection_info.get(connection)
            if not info:
                continue
            if exclude_participants and info.participant_id in exclude_participants:
                continue
            if self.send(connection, message):
                delivered += 1
        return delivered

    def send_to_participant(self, session_id: str, participant_id: str, message: dict) -> int:
        delivered = 0
        for connection in list(self.rooms.get(session_id, [])):
            info = self.connection_info.get(connection)
            if info and info.participant_id == participant_id:
                if self.send(connection, message):
                    delivered += 1
        return delivered

    def parse_message(self, websocket: WebSocket, message: str) -> Optional[dict]:
        """Decode an incoming frame; answers the sender with an error frame on failure"""
        info = self.connection_info.get(websocket)
        if info:
            info.update_activity()

        if len(message) > self.max_message_size:
            self.send(websocket, {"event": "error", "code": "invalid_argument", "message": "Message too large"})
            return None
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self.send(websocket, {"event": "error", "code": "invalid_argument", "message": "Invalid JSON"})
            return None
        if not isinstance(data, dict):
            self.send(websocket, {"event": "error", "code": "invalid_argument", "message": "Expected a JSON object"})
            return None
        return data

    async def drain(self, timeout: Optional[float] = None):
        """Wait until every queued frame has been handed to its socket"""
        waits = [info.outbox.join() for info in self.connection_info.values()]
        if waits:
            await asyncio.wait_for(asyncio.gather(*waits), timeout=timeout)

    async def _writer_loop(self, info: ConnectionInfo):
        websocket = info.websocket
        while True:
            message = await info.outbox.get()
            try:
                if info.is_alive and websocket.client_state == WebSocketState.CONNECTED:
                    await websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send failed for user {info.user_id}: {e}")
                info.is_alive = False
            finally:
                info.outbox.task_done()

    async def _heartbeat_loop(self):
        """Ping every connection and close the ones that went silent"""
        stale_after = self.ping_interval + self.pong_timeout * 2
        while True:
            try:
                await asyncio.sleep(self.ping_interval)

                now = _utcnow()
                for websocket, info in list(self.connection_info.items()):
                    if (now - info.last_seen).total_seconds() > stale_after:
                        logger.warning(f"Connection stale for user {info.user_id}")
                        info.is_alive = False
                        await self._close(websocket, code=1001)
                        continue
                    self.send(websocket, {"event": "ping"})

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat error: {e}")

    async def _close(self, websocket: WebSocket, code: int = 1000):
        try:
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.close(code=code)
        except Exception as e:
            logger.debug(f"Close failed: {e}")

    def get_connection_stats(self) -> Dict:
        """Get statistics about current connections"""
        return {
            "total_connections": len(self.connection_info),
            "room_connections": sum(len(conns) for conns in self.rooms.values()),
            "active_rooms": len(self.rooms),
            "queued_messages": sum(info.outbox.qsize() for info in self.connection_info.values()),
            "dropped_messages": sum(info.dropped for info in self.connection_info.values()),
        }

    async def close_all(self):
        """Close all connections gracefully"""
        for websocket in list(self.connection_info.keys()):
            await self._close(websocket)
            self.disconnect(websocket)
