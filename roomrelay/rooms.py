"""Room directory for the relay.

This module handles:
- Which room each connection belongs to (at most one)
- The single host of each room
- Join validation (one host per room, clients need a hosted room)
"""

from __future__ import annotations

import logging

from .errors import NoHostForRoom, RoomAlreadyHosted


class RoomDirectory:
    """Maps room names to their host and connections to their room.

    Must be used with the relay state lock held.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("roomrelay.rooms")
        self._room_by_id: dict[str, str] = {}
        self._host_by_room: dict[str, str] = {}

    def clear_all(self) -> None:
        self._room_by_id.clear()
        self._host_by_room.clear()

    def join(self, room: str, connection_id: str, as_host: bool) -> None:
        """
        Record ``connection_id`` as a member (and optionally host) of ``room``.

        Raises RoomAlreadyHosted / NoHostForRoom without touching any state.
        A successful join replaces the connection's previous membership.
        """
        host = self._host_by_room.get(room)

        if as_host:
            if host is not None and host != connection_id:
                raise RoomAlreadyHosted(room)
        elif host is None:
            raise NoHostForRoom(room)

        previous = self._room_by_id.get(connection_id)
        if previous is not None and previous != room:
            self.leave(connection_id)
        elif previous == room and not as_host and host == connection_id:
            # The host re-joining its own room as a client gives up the slot.
            self._host_by_room.pop(room, None)

        self._room_by_id[connection_id] = room
        if as_host:
            self._host_by_room[room] = connection_id

        self.log.debug(
            "Joined room=%s id=%s as_host=%s", room, connection_id, as_host
        )

    def leave(self, connection_id: str) -> str | None:
        """
        Remove the connection's membership; clear the host slot if it held it.

        Other members stay in the room. Returns the room left, if any.
        """
        room = self._room_by_id.pop(connection_id, None)
        if room is None:
            return None

        if self._host_by_room.get(room) == connection_id:
            self._host_by_room.pop(room, None)
            self.log.debug("Room %s is now hostless", room)
        return room

    def host_of(self, room: str | None) -> str | None:
        if room is None:
            return None
        return self._host_by_room.get(room)

    def room_of(self, connection_id: str) -> str | None:
        return self._room_by_id.get(connection_id)

    def is_host(self, connection_id: str) -> bool:
        room = self._room_by_id.get(connection_id)
        return room is not None and self._host_by_room.get(room) == connection_id

    def members_of(self, room: str | None) -> list[str]:
        if room is None:
            return []
        return [cid for cid, r in self._room_by_id.items() if r == room]

    def rooms(self) -> dict[str, str | None]:
        """Snapshot of every room with members or a host, mapped to its host."""
        out: dict[str, str | None] = {r: None for r in self._room_by_id.values()}
        out.update(self._host_by_room)
        return out

    def get_stats(self) -> dict[str, int]:
        return {
            "memberships": len(self._room_by_id),
            "hosted_rooms": len(self._host_by_room),
            "rooms": len(self.rooms()),
        }
