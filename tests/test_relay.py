from roomrelay.constants import (
    EV_CHAT_MESSAGE,
    EV_CLIENT_DISCONNECTED,
    EV_ROOM_JOINING_MESSAGE,
    EV_YOUR_NAME_IS,
)


def test_connect_assigns_name_and_tells_the_client(relay, transport) -> None:
    transport.open("c1", mode="normal", nickName="Alice", teamName="Red")
    transport.open("c2")

    assert transport.received("c1", EV_YOUR_NAME_IS) == [
        {"name": "u1", "nickName": "Alice", "teamName": "Red"}
    ]
    assert transport.received("c2", EV_YOUR_NAME_IS) == [
        {"name": "u2", "nickName": None, "teamName": None}
    ]
    assert relay.stats_manager.get("connects") == 2


def test_blank_and_oversized_hints_are_ignored(relay, transport) -> None:
    transport.open("c1", nickName="   ", teamName="x" * 100)
    assert relay.state.identities.nick_of("c1") is None
    assert relay.state.identities.team_of("c1") is None


def test_reconnect_reclaims_a_released_name(relay, transport) -> None:
    transport.open("c1")
    transport.close("c1")

    transport.open("c2", mode="re-connect", currentName="u1", nickName="Bob")
    assert transport.received("c2", EV_YOUR_NAME_IS) == [
        {"name": "u1", "nickName": "Bob", "teamName": None}
    ]
    assert relay.state.identities.counter == 1

    transport.open("c3")
    assert transport.received("c3", EV_YOUR_NAME_IS)[0]["name"] == "u2"


def test_reconnect_mode_without_a_name_gets_a_fresh_one(relay, transport) -> None:
    transport.open("c1", mode="re-connect")
    assert transport.received("c1", EV_YOUR_NAME_IS)[0]["name"] == "u1"


def test_reconnect_to_a_live_name_is_refused(relay, transport) -> None:
    transport.open("c1")
    transport.open("c2", mode="re-connect", currentName="u1")

    assert transport.received("c2", EV_YOUR_NAME_IS) == []
    assert transport.received("c2", EV_CHAT_MESSAGE) == [
        "Sorry, the name u1 is already in use. Reconnect without it to get a fresh name."
    ]
    assert transport.disconnected == ["c2"]
    assert "c2" not in relay.state
    assert relay.state.identities.id_for_name("u1") == "c1"
    assert relay.stats_manager.get("identity_conflicts") == 1
    assert relay.stats_manager.get("disconnects") == 0


def test_client_disconnect_notifies_the_host(hosted_room, transport) -> None:
    transport.close("c2")

    assert transport.received("c1", EV_CHAT_MESSAGE) == ["Bob (u2) has disconnected."]
    assert transport.received("c1", EV_CLIENT_DISCONNECTED) == ["u2"]
    assert transport.received("c3") == []


def test_disconnect_removes_every_entry(hosted_room, transport) -> None:
    state = hosted_room.state
    transport.close("c2")

    assert "c2" not in state
    assert state.identities.name_of("c2") is None
    assert state.identities.nick_of("c2") is None
    assert state.identities.id_for_name("u2") is None
    assert state.rooms.room_of("c2") is None
    assert "c2" not in state.rooms.members_of("r1")


def test_repeated_disconnect_is_a_noop(hosted_room, transport) -> None:
    transport.close("c2")
    transport.clear()

    hosted_room.on_disconnect("c2")

    assert transport.sent == []
    assert hosted_room.stats_manager.get("disconnects") == 1


def test_host_disconnect_leaves_clients_in_a_hostless_room(hosted_room, transport) -> None:
    state = hosted_room.state
    transport.close("c1")

    assert transport.sent == []
    assert state.rooms.host_of("r1") is None
    assert state.rooms.room_of("c2") == "r1"
    assert state.rooms.room_of("c3") == "r1"

    transport.open("c4")
    transport.emit("c4", "roomJoin", {"roomName": "r1", "hostOrClient": "host"})
    assert transport.received("c4", EV_ROOM_JOINING_MESSAGE)[-1] == "You are the host of room r1."
    assert state.rooms.host_of("r1") == "c4"


def test_startup_notice_reaches_connections_present_at_the_time(
    make_relay, transport, scheduler
) -> None:
    make_relay(startup_notice="Relay restarted.", startup_notice_delay_s=5.0)
    transport.open("c1")
    scheduler.advance(5)
    transport.open("c2")
    scheduler.advance(60)

    assert transport.received("c1", EV_CHAT_MESSAGE) == ["Relay restarted."]
    assert transport.received("c2", EV_CHAT_MESSAGE) == []


def test_startup_notice_can_be_disabled(relay, transport, scheduler) -> None:
    transport.open("c1")
    scheduler.advance(60)
    assert transport.received("c1", EV_CHAT_MESSAGE) == []


def test_stop_clears_all_state(hosted_room, scheduler) -> None:
    hosted_room.stop()

    assert len(hosted_room.state) == 0
    assert hosted_room.state.rooms.rooms() == {}
    assert scheduler.pending() == []
