import pytest

from roomrelay.errors import NoHostForRoom, RoomAlreadyHosted
from roomrelay.rooms import RoomDirectory


def test_host_then_client_join() -> None:
    rooms = RoomDirectory()
    rooms.join("r1", "h", as_host=True)
    rooms.join("r1", "c", as_host=False)

    assert rooms.host_of("r1") == "h"
    assert rooms.is_host("h")
    assert not rooms.is_host("c")
    assert sorted(rooms.members_of("r1")) == ["c", "h"]


def test_second_host_is_rejected_without_side_effects() -> None:
    rooms = RoomDirectory()
    rooms.join("r1", "h", as_host=True)
    rooms.join("r2", "x", as_host=True)

    with pytest.raises(RoomAlreadyHosted) as exc:
        rooms.join("r1", "x", as_host=True)

    assert str(exc.value) == "Sorry, there is already a host for room r1."
    assert rooms.host_of("r1") == "h"
    assert rooms.room_of("x") == "r2"
    assert rooms.host_of("r2") == "x"


def test_host_rejoining_its_own_room_as_host_is_accepted() -> None:
    rooms = RoomDirectory()
    rooms.join("r1", "h", as_host=True)
    rooms.join("r1", "h", as_host=True)
    assert rooms.host_of("r1") == "h"


def test_client_join_requires_a_host() -> None:
    rooms = RoomDirectory()
    with pytest.raises(NoHostForRoom) as exc:
        rooms.join("r1", "c", as_host=False)
    assert str(exc.value) == "Sorry, there is no host yet for room r1."
    assert rooms.room_of("c") is None
    assert rooms.rooms() == {}


def test_joining_another_room_leaves_the_first() -> None:
    rooms = RoomDirectory()
    rooms.join("r1", "h1", as_host=True)
    rooms.join("r2", "h2", as_host=True)
    rooms.join("r1", "h2", as_host=False)

    assert rooms.room_of("h2") == "r1"
    assert rooms.host_of("r2") is None
    assert "h2" not in rooms.members_of("r2")


def test_room_names_are_case_sensitive() -> None:
    rooms = RoomDirectory()
    rooms.join("Lobby", "h", as_host=True)
    with pytest.raises(NoHostForRoom):
        rooms.join("lobby", "c", as_host=False)


def test_host_leaving_keeps_members() -> None:
    rooms = RoomDirectory()
    rooms.join("r1", "h", as_host=True)
    rooms.join("r1", "c", as_host=False)

    assert rooms.leave("h") == "r1"
    assert rooms.host_of("r1") is None
    assert rooms.room_of("c") == "r1"
    assert rooms.rooms() == {"r1": None}

    rooms.join("r1", "h2", as_host=True)
    assert rooms.host_of("r1") == "h2"


def test_leave_unknown_connection_is_a_noop() -> None:
    rooms = RoomDirectory()
    assert rooms.leave("nobody") is None
    assert rooms.get_stats() == {"memberships": 0, "hosted_rooms": 0, "rooms": 0}
