import asyncio
import copy

import pytest

from app.core.config import DEFAULT_PARTICIPANT_COLORS
from app.core.exceptions import ForbiddenError, InvalidArgumentError, NotFoundError
from app.domains.collaboration.entities import (
    CursorPosition,
    Language,
    Permission,
    SessionEventType,
    VoiceStateChange,
)
from app.domains.collaboration.repository import InMemorySessionRepository
from app.domains.collaboration.templates import JAVASCRIPT_TEMPLATE, PYTHON_TEMPLATE
from app.shared.schemas.events import (
    CodeUpdateEvent,
    NewMessageEvent,
    ParticipantJoinedEvent,
    ParticipantLeftEvent,
    ParticipantUpdateEvent,
    VoiceIceCandidateEvent,
    VoiceOfferEvent,
    VoiceStateChangeEvent,
)


class YieldingRepository(InMemorySessionRepository):
    """Suspends on every write, the way a networked store would"""

    async def save(self, session):
        await asyncio.sleep(0)
        await super().save(session)


class ScanRaceRepository(InMemorySessionRepository):
    """Hands out a snapshot from list_sessions, then lets the store move on"""

    def __init__(self):
        super().__init__()
        self.after_scan = None

    async def list_sessions(self):
        snapshot = copy.deepcopy(list(self.sessions.values()))
        if self.after_scan:
            self.after_scan()
        return snapshot


async def test_create_session_seeds_template(manager, repository, alice):
    session = await manager.create_session("python", alice)

    assert session.language == Language.PYTHON
    assert session.code == PYTHON_TEMPLATE
    assert session.host_id == "alice"
    assert len(session.participants) == 1
    host = session.participants[0]
    assert host.user_id == "alice"
    assert host.permission == Permission.WRITE
    assert host.color == DEFAULT_PARTICIPANT_COLORS[0]
    assert await repository.get(session.id) is session


async def test_create_session_keeps_initial_code(manager, alice):
    session = await manager.create_session("javascript", alice, initial_code="console.log(1)")
    assert session.code == "console.log(1)"

    empty = await manager.create_session("javascript", alice, initial_code="")
    assert empty.code == JAVASCRIPT_TEMPLATE


async def test_create_session_rejects_unknown_language(manager, alice):
    with pytest.raises(InvalidArgumentError):
        await manager.create_session("cobol", alice)


async def test_join_assigns_next_color_and_default_permission(manager, alice, bob):
    session = await manager.create_session("python", alice)
    session, bob_id = await manager.join_session(session.id, bob)

    bob_participant = session.find_participant(bob_id)
    assert bob_participant.color == DEFAULT_PARTICIPANT_COLORS[1]
    assert bob_participant.permission == Permission.WRITE
    assert bob_participant.is_active


async def test_join_is_idempotent(manager, alice, bob):
    session = await manager.create_session("python", alice)
    _, first = await manager.join_session(session.id, bob)
    session, second = await manager.join_session(session.id, bob)

    assert first == second
    assert len(session.participants) == 2


async def test_host_join_returns_host_participant(manager, alice):
    session = await manager.create_session("python", alice)
    host_id = session.participants[0].id

    session, participant_id = await manager.join_session(session.id, alice)

    assert participant_id == host_id
    assert len(session.participants) == 1


async def test_join_unknown_session(manager, alice):
    with pytest.raises(NotFoundError):
        await manager.join_session("collab_missing", alice)


async def test_join_publishes_full_roster(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    _, bob_id = await manager.join_session(session.id, bob)

    event = bus.events()[-1]
    assert isinstance(event, ParticipantJoinedEvent)
    assert event.participant.id == bob_id
    assert len(event.session.participants) == 2


async def test_last_write_wins(manager, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)

    await manager.update_code(session.id, alice_id, alice, "x = 1")
    session = await manager.update_code(session.id, bob_id, bob, "x = 2")

    assert session.code == "x = 2"


async def test_code_update_excludes_sender(manager, bus, alice):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id

    await manager.update_code(session.id, alice_id, alice, "print(1)", cursor=CursorPosition(line=0, column=8))

    _, delivery = bus.published[-1]
    assert isinstance(delivery.event, CodeUpdateEvent)
    assert delivery.sender_participant_id == alice_id
    assert delivery.event.cursor.column == 8


async def test_read_only_participant_cannot_edit(make_manager, alice, bob):
    manager = make_manager(default_permission=Permission.READ)
    session = await manager.create_session("python", alice)
    _, bob_id = await manager.join_session(session.id, bob)

    with pytest.raises(ForbiddenError):
        await manager.update_code(session.id, bob_id, bob, "hacked")

    assert session.code == PYTHON_TEMPLATE


async def test_cannot_act_as_another_participant(manager, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    await manager.join_session(session.id, bob)

    with pytest.raises(ForbiddenError):
        await manager.update_code(session.id, alice_id, bob, "nope")
    with pytest.raises(ForbiddenError):
        await manager.send_message(session.id, alice_id, bob, "hi")


async def test_leave_keeps_roster_and_rejoin_reactivates(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    _, bob_id = await manager.join_session(session.id, bob)

    await manager.leave_session(session.id, bob_id, bob)

    assert len(session.participants) == 2
    assert not session.find_participant(bob_id).is_active
    assert isinstance(bus.events()[-1], ParticipantLeftEvent)

    session, rejoined = await manager.join_session(session.id, bob)
    assert rejoined == bob_id
    assert len(session.participants) == 2
    assert session.find_participant(bob_id).is_active


async def test_set_permission_is_host_only(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)

    with pytest.raises(ForbiddenError):
        await manager.set_permission(session.id, alice_id, bob, Permission.READ)

    await manager.set_permission(session.id, bob_id, alice, Permission.READ)
    assert isinstance(bus.events()[-1], ParticipantUpdateEvent)
    with pytest.raises(ForbiddenError):
        await manager.update_code(session.id, bob_id, bob, "x")

    with pytest.raises(NotFoundError):
        await manager.set_permission(session.id, "participant_missing", alice, Permission.WRITE)


async def test_messages_kept_in_order(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)

    await manager.send_message(session.id, alice_id, alice, "one")
    await manager.send_message(session.id, bob_id, bob, "two")
    message = await manager.send_message(session.id, alice_id, alice, "three")

    assert [m.content for m in session.messages] == ["one", "two", "three"]
    assert message.participant_name == "Alice"
    assert isinstance(bus.events()[-1], NewMessageEvent)


async def test_message_validation(make_manager, alice):
    manager = make_manager(max_message_length=10)
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id

    with pytest.raises(InvalidArgumentError):
        await manager.send_message(session.id, alice_id, alice, "   ")
    with pytest.raises(InvalidArgumentError):
        await manager.send_message(session.id, alice_id, alice, "x" * 11)
    assert session.messages == []


async def test_cursor_update_is_not_activity(manager, clock, alice):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    created = session.last_activity

    clock.advance(minutes=5)
    await manager.update_cursor(session.id, alice_id, alice, CursorPosition(line=3, column=1))

    assert session.last_activity == created
    assert session.participants[0].cursor == CursorPosition(line=3, column=1)


async def test_voice_state_changes(manager, bus, alice):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id

    await manager.update_voice_state(session.id, alice_id, alice, VoiceStateChange.CONNECTED)
    await manager.update_voice_state(session.id, alice_id, alice, VoiceStateChange.MUTED)

    state = session.voice_state_for(alice_id)
    assert state.is_connected and state.is_muted and not state.is_deafened
    event = bus.events()[-1]
    assert isinstance(event, VoiceStateChangeEvent)
    assert event.voice_state.is_muted


async def test_relay_signal_targets_one_peer(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)

    await manager.relay_signal(session.id, alice_id, alice, "voice-offer", bob_id, {"sdp": "v=0"})

    event = bus.events()[-1]
    assert isinstance(event, VoiceOfferEvent)
    assert event.participant_id == alice_id
    assert event.target_participant_id == bob_id
    assert event.offer == {"sdp": "v=0"}


async def test_relay_signal_validation(manager, alice):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id

    with pytest.raises(InvalidArgumentError):
        await manager.relay_signal(session.id, alice_id, alice, "voice-offer", alice_id, {})
    with pytest.raises(NotFoundError):
        await manager.relay_signal(session.id, alice_id, alice, "voice-answer", "participant_x", {})
    with pytest.raises(InvalidArgumentError):
        await manager.relay_signal(session.id, alice_id, alice, "voice-hangup", "participant_x", {})


async def test_get_session_requires_membership(manager, alice, carol):
    session = await manager.create_session("python", alice)

    with pytest.raises(ForbiddenError):
        await manager.get_session(session.id, carol)

    _, participant_id = await manager.get_session(session.id, alice)
    assert participant_id == session.participants[0].id


async def test_event_history(make_manager, alice, bob):
    manager = make_manager(event_history_limit=3)
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)
    await manager.update_code(session.id, alice_id, alice, "a")
    await manager.send_message(session.id, bob_id, bob, "hi")
    await manager.leave_session(session.id, bob_id, bob)

    events = await manager.get_events(session.id, alice)

    assert [e.type for e in events] == [
        SessionEventType.CODE_UPDATE,
        SessionEventType.CHAT_MESSAGE,
        SessionEventType.PARTICIPANT_LEAVE,
    ]


async def test_reap_removes_only_idle_sessions(manager, repository, clock, alice, bob):
    stale = await manager.create_session("python", alice)
    clock.advance(minutes=30)
    fresh = await manager.create_session("python", bob)

    clock.advance(minutes=30)
    # exactly at the threshold is not idle yet
    assert await manager.reap_idle_sessions() == []

    clock.advance(seconds=1)
    removed = await manager.reap_idle_sessions()

    assert removed == [stale.id]
    assert await repository.get(stale.id) is None
    assert await repository.get(fresh.id) is fresh
    with pytest.raises(NotFoundError):
        await manager.validate_session(stale.id)


async def test_reap_can_skip_sessions_with_active_participants(make_manager, clock, alice):
    manager = make_manager(skip_active_on_reap=True)
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id

    clock.advance(hours=2)
    assert await manager.reap_idle_sessions() == []

    await manager.leave_session(session.id, alice_id, alice)
    clock.advance(hours=2)
    assert await manager.reap_idle_sessions() == [session.id]


async def test_unknown_session_ids_leave_no_lock_behind(manager, clock, alice):
    for i in range(50):
        with pytest.raises(NotFoundError):
            await manager.join_session(f"collab_bogus_{i}", alice)
    with pytest.raises(NotFoundError):
        await manager.update_code("collab_bogus_x", "participant_x", alice, "x")
    with pytest.raises(NotFoundError):
        await manager.send_message("collab_bogus_y", "participant_y", alice, "hi")

    assert manager._locks == {}

    session = await manager.create_session("python", alice)
    await manager.join_session(session.id, alice)
    assert session.id in manager._locks

    clock.advance(hours=2)
    assert await manager.reap_idle_sessions() == [session.id]
    assert manager._locks == {}


async def test_concurrent_edits_keep_arrival_order(make_manager, bus, alice, bob):
    manager = make_manager(repository=YieldingRepository())
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)
    editors = [(alice_id, alice), (bob_id, bob)]

    await asyncio.gather(*(
        manager.update_code(session.id, *editors[i % 2], f"v{i}")
        for i in range(10)
    ))

    assert session.code == "v9"
    published = [e.code for e in bus.events() if isinstance(e, CodeUpdateEvent)]
    assert published == [f"v{i}" for i in range(10)]


async def test_concurrent_messages_keep_arrival_order(make_manager, bus, alice, bob):
    manager = make_manager(repository=YieldingRepository())
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)
    senders = [(alice_id, alice), (bob_id, bob)]

    await asyncio.gather(*(
        manager.send_message(session.id, *senders[i % 2], f"m{i}")
        for i in range(10)
    ))

    expected = [f"m{i}" for i in range(10)]
    assert [m.content for m in session.messages] == expected
    assert [e.content for e in bus.events() if isinstance(e, NewMessageEvent)] == expected


async def test_null_ice_candidate_is_relayed(manager, bus, alice, bob):
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    _, bob_id = await manager.join_session(session.id, bob)

    await manager.relay_signal(session.id, bob_id, bob, "voice-ice-candidate", alice_id, None)

    event = bus.events()[-1]
    assert isinstance(event, VoiceIceCandidateEvent)
    assert event.candidate is None
    assert event.target_participant_id == alice_id


async def test_reap_rechecks_activity_under_lock(make_manager, clock, alice):
    repository = ScanRaceRepository()
    manager = make_manager(repository=repository, skip_active_on_reap=True)
    session = await manager.create_session("python", alice)
    alice_id = session.participants[0].id
    await manager.leave_session(session.id, alice_id, alice)
    clock.advance(hours=2)

    def rejoin_without_activity():
        repository.sessions[session.id].participants[0].is_active = True

    repository.after_scan = rejoin_without_activity

    assert await manager.reap_idle_sessions() == []
    assert await repository.get(session.id) is session
