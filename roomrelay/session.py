from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from .constants import (
    H_CURRENT_NAME,
    H_MODE,
    H_NICK_NAME,
    H_TEAM_NAME,
    IDLE_BUDGET_S,
    LABEL_COMMA,
    LABEL_PRENS,
    MODE_NORMAL,
    MODE_RECONNECT,
)
from .identity import IdentityRegistry
from .idle import IdleState, TimerHandle
from .rooms import RoomDirectory
from .util import normalize_nick, normalize_team


@dataclass(frozen=True)
class ConnectHints:
    """Client-supplied hints that arrive with a new connection."""

    mode: str = MODE_NORMAL
    current_name: str | None = None
    nick_name: str | None = None
    team_name: str | None = None

    @classmethod
    def from_body(cls, body: Any, *, nick_max_chars: int = 32) -> ConnectHints:
        if not isinstance(body, dict):
            return cls()
        mode = body.get(H_MODE)
        current = body.get(H_CURRENT_NAME)
        return cls(
            mode=mode if mode in (MODE_NORMAL, MODE_RECONNECT) else MODE_NORMAL,
            current_name=current.strip() if isinstance(current, str) and current.strip() else None,
            nick_name=normalize_nick(body.get(H_NICK_NAME), max_chars=nick_max_chars),
            team_name=normalize_team(body.get(H_TEAM_NAME), max_chars=nick_max_chars),
        )

    @property
    def wants_reattach(self) -> bool:
        return self.mode == MODE_RECONNECT and bool(self.current_name)


@dataclass
class Connection:
    """One active transport session and its idle timers."""

    id: str
    display_name: str
    idle_budget_s: float = IDLE_BUDGET_S
    idle_state: IdleState = IdleState.ACTIVE
    idle_generation: int = 0
    warning_timer: TimerHandle | None = field(default=None, repr=False)
    disconnect_timer: TimerHandle | None = field(default=None, repr=False)
    closed: bool = False

    def cancel_timers(self) -> None:
        for handle in (self.warning_timer, self.disconnect_timer):
            if handle is not None:
                handle.cancel()
        self.warning_timer = None
        self.disconnect_timer = None


@dataclass(frozen=True)
class Departure:
    """Routing facts captured for a connection right before it is removed."""

    connection_id: str
    display_name: str
    label: str
    room: str | None
    host_id: str | None
    was_host: bool

    @property
    def notify_host(self) -> str | None:
        """The host to tell about this departure, unless it is the leaver."""
        if self.host_id is None or self.host_id == self.connection_id:
            return None
        return self.host_id


class SessionState:
    """
    The single owned instance of all shared relay state.

    Holds the identity registry, the room directory and the per-connection
    entities. Every handler receives this object; nothing lives in module
    globals. Must be used with the relay state lock held.
    """

    def __init__(self, *, idle_budget_s: float = IDLE_BUDGET_S) -> None:
        self.log = logging.getLogger("roomrelay.session")
        self.identities = IdentityRegistry()
        self.rooms = RoomDirectory()
        self.connections: dict[str, Connection] = {}
        self.idle_budget_s = float(idle_budget_s)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self.connections

    def __len__(self) -> int:
        return len(self.connections)

    def get(self, connection_id: str) -> Connection | None:
        return self.connections.get(connection_id)

    def connect(self, connection_id: str, hints: ConnectHints) -> Connection:
        """
        Resolve a display identity for a new connection and register it.

        Raises IdentityConflict when a reattach names a display name held by
        another live connection; nothing is registered in that case.
        """
        existing = self.connections.get(connection_id)
        if existing is not None:
            self.log.debug("Connection %s already registered", connection_id)
            return existing

        if hints.wants_reattach:
            name = self.identities.reattach(
                connection_id,
                str(hints.current_name),
                team=hints.team_name,
                nick=hints.nick_name,
            )
        else:
            name = self.identities.register_new(
                connection_id, team=hints.team_name, nick=hints.nick_name
            )

        conn = Connection(id=connection_id, display_name=name, idle_budget_s=self.idle_budget_s)
        self.connections[connection_id] = conn
        return conn

    def is_host(self, connection_id: str) -> bool:
        return self.rooms.is_host(connection_id)

    def label(self, connection_id: str, mode: str = LABEL_COMMA) -> str:
        return self.identities.display_label(
            connection_id, mode, is_host=self.rooms.is_host(connection_id)
        )

    def capture_departure(self, connection_id: str) -> Departure | None:
        """
        Capture routing targets for a leaving connection, then remove it.

        The room and its host are read before the directory entry is cleared,
        because leaving clears the very host slot the notification needs.
        Timers are cancelled here, on the only removal path. Returns None when
        the connection is already gone.
        """
        conn = self.connections.pop(connection_id, None)
        if conn is None:
            return None

        room = self.rooms.room_of(connection_id)
        departure = Departure(
            connection_id=connection_id,
            display_name=conn.display_name,
            label=self.label(connection_id, LABEL_PRENS),
            room=room,
            host_id=self.rooms.host_of(room),
            was_host=self.rooms.is_host(connection_id),
        )

        conn.closed = True
        conn.cancel_timers()
        self.identities.remove(connection_id)
        self.rooms.leave(connection_id)
        return departure

    def others_live(self, connection_id: str) -> int:
        return sum(1 for cid in self.connections if cid != connection_id)

    def clear_all(self) -> list[str]:
        ids = list(self.connections.keys())
        for conn in self.connections.values():
            conn.closed = True
            conn.cancel_timers()
        self.connections.clear()
        self.identities.clear_all()
        self.rooms.clear_all()
        return ids

    def census(self) -> dict[str, Any]:
        """Snapshot of rooms and connections for the room report."""
        rooms: list[dict[str, Any]] = []
        for room, host in sorted(self.rooms.rooms().items()):
            members = self.rooms.members_of(room)
            rooms.append(
                {
                    "room": room,
                    "host": self.identities.name_of(host) if host else None,
                    "members": sorted(
                        self.label(cid, LABEL_PRENS)
                        for cid in members
                        if cid != host
                    ),
                }
            )
        lobby = [
            self.label(cid, LABEL_PRENS)
            for cid in self.connections
            if self.rooms.room_of(cid) is None
        ]
        return {
            "connections": len(self.connections),
            "name_counter": self.identities.counter,
            "rooms": rooms,
            "unjoined": sorted(lobby),
        }
