# app/domains/collaboration/relay.py
"""
Fan-out of session events to the sockets of a session room.

The relay never interprets payloads; it only decides who receives them.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Type, get_args

from app.core.event_bus import EventBus
from app.core.websocket_manager import WebSocketManager
from app.shared.schemas.events import (
    CodeUpdateEvent,
    CursorUpdateEvent,
    NewMessageEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    ParticipantUpdateEvent,
    RelayEvent,
    UserTypingEvent,
    VoiceAnswerEvent,
    VoiceIceCandidateEvent,
    VoiceOfferEvent,
    VoiceStateChangeEvent,
)
from app.shared.utils.logger import get_logger

logger = get_logger(__name__)

RELAY_TOPIC = "collaboration:relay"


class Audience(str, Enum):
    ROOM = "room"  # every socket in the room, sender included
    OTHERS = "others"  # room minus the sender's sockets
    TARGET = "target"  # only the addressed participant


AUDIENCES: Dict[Type, Audience] = {
    CodeUpdateEvent: Audience.OTHERS,
    CursorUpdateEvent: Audience.OTHERS,
    UserTypingEvent: Audience.OTHERS,
    ParticipantJoinedEvent: Audience.ROOM,
    ParticipantLeftEvent: Audience.ROOM,
    ParticipantUpdateEvent: Audience.ROOM,
    NewMessageEvent: Audience.ROOM,
    VoiceStateChangeEvent: Audience.ROOM,
    VoiceOfferEvent: Audience.TARGET,
    VoiceAnswerEvent: Audience.TARGET,
    VoiceIceCandidateEvent: Audience.TARGET,
}

_missing = set(get_args(get_args(RelayEvent)[0])) - set(AUDIENCES)
if _missing:
    raise RuntimeError(f"Relay events without an audience: {sorted(t.__name__ for t in _missing)}")


@dataclass
class Delivery:
    session_id: str
    event: RelayEvent
    sender_participant_id: Optional[str] = None


class SessionRelay:
    def __init__(self, connections: WebSocketManager):
        self.connections = connections

    async def dispatch(self, delivery: Delivery) -> int:
        event = delivery.event
        audience = AUDIENCES[type(event)]
        message = event.model_dump(mode="json", by_alias=True)

        if audience == Audience.TARGET:
            delivered = self.connections.send_to_participant(
                delivery.session_id, event.target_participant_id, message
            )
            if not delivered:
                logger.debug(
                    f"No live socket for {event.target_participant_id} in {delivery.session_id}, "
                    f"dropped {event.event}"
                )
            return delivered

        exclude = None
        if audience == Audience.OTHERS and delivery.sender_participant_id:
            exclude = {delivery.sender_participant_id}
        return self.connections.broadcast(delivery.session_id, message, exclude_participants=exclude)


def register_event_handlers(bus: EventBus, connections: WebSocketManager) -> SessionRelay:
    relay = SessionRelay(connections)
    bus.subscribe(RELAY_TOPIC, relay.dispatch)
    return relay
