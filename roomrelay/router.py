from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .constants import (
    EV_CHAT_MESSAGE,
    EV_CHAT_MESSAGE_NOT_ME,
    EV_CLIENT_DISCONNECT_BY_HOST,
    EV_CLIENT_MK,
    EV_CLIENT_MK_TO_HOST,
    EV_COMMAND_HOST_TO_ALL,
    EV_CONTROL_MESSAGE,
    EV_DISCONNECT_BY_SERVER,
    EV_ECHO_CLIENT_TO_SERVER,
    EV_ECHO_HOST_TO_SERVER,
    EV_ECHO_SERVER_TO_CLIENT,
    EV_ECHO_SERVER_TO_HOST,
    EV_NEW_GAME_CLIENT,
    EV_OK_DISCONNECT_ME,
    EV_ROOM_JOIN,
    EV_ROOM_JOINING_MESSAGE,
    EV_SHUTDOWN_P2P_DELETE_CLIENT,
    EV_SIGNALING_MESSAGE,
    LABEL_COMMA,
    LABEL_PRENS,
    TO_HOST,
    TO_ROOM,
    TO_ROOM_NO_SENDER,
)
from .errors import NoHostForRoom, RoomAlreadyHosted, UnknownTarget
from .messages import Outbound
from .session import Connection
from .util import normalize_room

if TYPE_CHECKING:
    from .service import RelayService


class Event(enum.Enum):
    """Every inbound event the relay understands."""

    ECHO_CLIENT_TO_SERVER = EV_ECHO_CLIENT_TO_SERVER
    ECHO_HOST_TO_SERVER = EV_ECHO_HOST_TO_SERVER
    CHAT_MESSAGE = EV_CHAT_MESSAGE
    CHAT_MESSAGE_NOT_ME = EV_CHAT_MESSAGE_NOT_ME
    SIGNALING_MESSAGE = EV_SIGNALING_MESSAGE
    CONTROL_MESSAGE = EV_CONTROL_MESSAGE
    CLIENT_MK = EV_CLIENT_MK
    ROOM_JOIN = EV_ROOM_JOIN
    CLIENT_DISCONNECT_BY_HOST = EV_CLIENT_DISCONNECT_BY_HOST
    OK_DISCONNECT_ME = EV_OK_DISCONNECT_ME
    SHUTDOWN_P2P_DELETE_CLIENT = EV_SHUTDOWN_P2P_DELETE_CLIENT
    COMMAND_HOST_TO_ALL = EV_COMMAND_HOST_TO_ALL

    @classmethod
    def parse(cls, name: Any) -> Event | None:
        try:
            return cls(name)
        except ValueError:
            return None


# Events that count as activity for the idle monitor.
IDLE_TRAFFIC = frozenset({Event.CHAT_MESSAGE, Event.CHAT_MESSAGE_NOT_ME})


@dataclass(frozen=True)
class Target:
    """A resolved delivery target: one connection, or a room (minus one)."""

    connection_id: str | None = None
    room: str | None = None
    exclude: str | None = None


class MessageRouter:
    """
    Resolves and dispatches inbound relay events.

    This class is responsible for:
    - Mapping event names onto the closed Event set
    - Resolving addressing keywords (host, room, roomNoSender, names)
    - Room joins and the notifications that go with them
    - Relaying chat, input, control and signaling traffic
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("roomrelay.router")

    @property
    def state(self):
        return self.hub.state

    def route_event(
        self,
        connection_id: str,
        event_name: Any,
        payload: Any,
        outgoing: list[Outbound],
    ) -> None:
        """
        Main entry point for an inbound event.

        This method should be called with the state lock held.
        """
        conn = self.state.get(connection_id)
        if conn is None:
            return

        self.hub.stats_manager.inc("events_in")

        event = Event.parse(event_name)
        if event is None:
            self.hub.stats_manager.inc("events_bad")
            self.log.debug(
                "Unknown event name=%s id=%s event=%r",
                conn.display_name,
                connection_id,
                event_name,
            )
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX name=%s id=%s event=%s room=%r payload_type=%s",
                conn.display_name,
                connection_id,
                event.value,
                self.state.rooms.room_of(connection_id),
                type(payload).__name__,
            )

        if event in IDLE_TRAFFIC:
            self.hub.idle_monitor.touch(conn)

        try:
            self._dispatch(event, conn, payload, outgoing)
        except UnknownTarget as e:
            self.hub.stats_manager.inc("events_dropped")
            self.log.debug(
                "Dropped event=%s name=%s: %s", event.value, conn.display_name, e
            )

    def _dispatch(
        self,
        event: Event,
        conn: Connection,
        payload: Any,
        outgoing: list[Outbound],
    ) -> None:
        if event is Event.ECHO_CLIENT_TO_SERVER:
            self._handle_echo_from_client(conn, payload, outgoing)
        elif event is Event.ECHO_HOST_TO_SERVER:
            self._handle_echo_from_host(conn, payload, outgoing)
        elif event is Event.CHAT_MESSAGE:
            self._handle_chat(conn, payload, outgoing, include_sender=True)
        elif event is Event.CHAT_MESSAGE_NOT_ME:
            self._handle_chat(conn, payload, outgoing, include_sender=False)
        elif event is Event.SIGNALING_MESSAGE:
            self._handle_targeted(conn, EV_SIGNALING_MESSAGE, payload, outgoing)
        elif event is Event.CONTROL_MESSAGE:
            self._handle_targeted(conn, EV_CONTROL_MESSAGE, payload, outgoing)
        elif event is Event.CLIENT_MK:
            self._handle_client_mk(conn, payload, outgoing)
        elif event is Event.ROOM_JOIN:
            self._handle_room_join(conn, payload, outgoing)
        elif event is Event.CLIENT_DISCONNECT_BY_HOST:
            self._handle_disconnect_by_host(conn, payload, outgoing)
        elif event is Event.OK_DISCONNECT_ME:
            self._handle_ok_disconnect_me(conn, payload, outgoing)
        elif event is Event.SHUTDOWN_P2P_DELETE_CLIENT:
            self._handle_shutdown_p2p(conn, payload, outgoing)
        elif event is Event.COMMAND_HOST_TO_ALL:
            self._handle_command_to_all(conn, payload, outgoing)

    # Target resolution

    def host_target(self, connection_id: str) -> str:
        room = self.state.rooms.room_of(connection_id)
        host = self.state.rooms.host_of(room)
        if host is None:
            raise UnknownTarget(TO_HOST)
        return host

    def resolve_target(self, connection_id: str, to: Any) -> Target:
        """
        Resolve an addressing keyword sent by ``connection_id``.

        Raises UnknownTarget when nothing matches.
        """
        if to == TO_HOST:
            return Target(connection_id=self.host_target(connection_id))

        if to in (TO_ROOM, TO_ROOM_NO_SENDER):
            room = self.state.rooms.room_of(connection_id)
            if room is None:
                raise UnknownTarget(to)
            exclude = connection_id if to == TO_ROOM_NO_SENDER else None
            return Target(room=room, exclude=exclude)

        if not isinstance(to, str) or not to:
            raise UnknownTarget(to)

        cid = self.state.identities.resolve_name(to)
        if cid is None:
            raise UnknownTarget(to)
        return Target(connection_id=cid)

    def _queue_to_target(
        self, outgoing: list[Outbound], target: Target, event: str, payload: Any
    ) -> None:
        helper = self.hub.message_helper
        if target.connection_id is not None:
            helper.queue_send(outgoing, target.connection_id, event, payload)
        elif target.room is not None:
            helper.queue_broadcast(
                outgoing, target.room, event, payload, exclude=target.exclude
            )

    # Handlers

    def _handle_echo_from_client(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        if payload == "server":
            # Bounces straight back off the relay.
            self.hub.message_helper.queue_send(
                outgoing, conn.id, EV_ECHO_SERVER_TO_CLIENT, "server"
            )
        elif payload == "host":
            # The scenic route: the host replays the id back to us.
            host = self.host_target(conn.id)
            self.hub.message_helper.queue_send(
                outgoing, host, EV_ECHO_SERVER_TO_HOST, conn.id
            )
        else:
            raise UnknownTarget(payload)

    def _handle_echo_from_host(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        if not isinstance(payload, str) or payload not in self.state:
            raise UnknownTarget(payload)
        self.hub.message_helper.queue_send(
            outgoing, payload, EV_ECHO_SERVER_TO_CLIENT, "host"
        )

    def _handle_chat(
        self,
        conn: Connection,
        payload: Any,
        outgoing: list[Outbound],
        *,
        include_sender: bool,
    ) -> None:
        if not isinstance(payload, str):
            raise UnknownTarget(payload)

        if include_sender and self.hub.command_handler.handle_host_command(
            conn.id, payload, outgoing
        ):
            return

        room = self.state.rooms.room_of(conn.id)
        if room is None:
            raise UnknownTarget(TO_ROOM)

        text = f"{payload} ({self.state.label(conn.id, LABEL_COMMA)})"
        self.hub.message_helper.queue_broadcast(
            outgoing,
            room,
            EV_CHAT_MESSAGE,
            text,
            exclude=None if include_sender else conn.id,
        )
        self.hub.stats_manager.inc("chats_forwarded")

    def _handle_targeted(
        self,
        conn: Connection,
        event: str,
        payload: Any,
        outgoing: list[Outbound],
    ) -> None:
        """Relay a control/signaling payload to whatever its ``to`` resolves to."""
        if not isinstance(payload, dict):
            raise UnknownTarget(None)

        target = self.resolve_target(conn.id, payload.get("to"))
        relayed = self._stamp_display(conn.id, payload)
        self._queue_to_target(outgoing, target, event, relayed)
        self.hub.stats_manager.inc("relays")

    def _stamp_display(self, connection_id: str, payload: dict) -> dict:
        data = payload.get("data")
        if not isinstance(data, dict) or "displayThis" not in data:
            return payload
        shown = data.get("displayThis")
        label = self.state.label(connection_id, LABEL_COMMA)
        return {**payload, "data": {**data, "displayThis": f"{shown} ({label})"}}

    def _handle_client_mk(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        host = self.host_target(conn.id)
        self.hub.message_helper.queue_send(outgoing, host, EV_CLIENT_MK_TO_HOST, payload)

    def _handle_room_join(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        helper = self.hub.message_helper
        body = payload if isinstance(payload, dict) else {}

        role = body.get("hostOrClient")
        if role is None:
            role = "client"
        if role not in ("host", "client"):
            self.log.debug(
                "Ignored roomJoin with role=%r from %s", role, conn.display_name
            )
            return

        room = normalize_room(
            body.get("roomName"), max_chars=self.hub.config.max_room_name_len
        )
        if room is None:
            helper.queue_send(
                outgoing,
                conn.id,
                EV_ROOM_JOINING_MESSAGE,
                "Sorry, a valid room name is required.",
            )
            return

        as_host = role == "host"
        request_stream = bool(body.get("requestStream", False))
        player = body.get("player")

        # Computed before joining, so a new host is still shown by name.
        display = self.state.label(conn.id, LABEL_PRENS)

        try:
            self.state.rooms.join(room, conn.id, as_host)
        except (RoomAlreadyHosted, NoHostForRoom) as e:
            self.hub.stats_manager.inc("joins_rejected")
            self.log.info(
                "JOIN rejected name=%s room=%s as_host=%s: %s",
                conn.display_name,
                room,
                as_host,
                e,
            )
            helper.queue_send(outgoing, conn.id, EV_ROOM_JOINING_MESSAGE, str(e))
            return

        self.hub.stats_manager.inc("joins")
        helper.queue_join(outgoing, conn.id, room)
        self.log.info(
            "Room %s joined by %s%s", room, conn.display_name, " as host" if as_host else ""
        )

        helper.queue_send(
            outgoing,
            conn.id,
            EV_ROOM_JOINING_MESSAGE,
            f"You have joined room {room} and your client name is {display}.",
        )

        if as_host:
            helper.queue_send(
                outgoing, conn.id, EV_ROOM_JOINING_MESSAGE, f"You are the host of room {room}."
            )
            return

        host = self.state.rooms.host_of(room)
        if host is None:
            return
        ids = self.state.identities
        helper.queue_send(
            outgoing,
            host,
            EV_NEW_GAME_CLIENT,
            {
                "clientName": conn.display_name,
                "requestStream": request_stream,
                "player": player,
                "nickName": ids.nick_of(conn.id),
                "teamName": ids.team_of(conn.id),
            },
        )
        helper.queue_chat(outgoing, host, f"{display} is a new client in room {room}.")

    def _handle_disconnect_by_host(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        if not isinstance(payload, str):
            raise UnknownTarget(payload)
        client = self.state.identities.id_for_name(payload)
        if client is None:
            raise UnknownTarget(payload)

        room = self.state.rooms.room_of(client)
        if self.state.rooms.host_of(room) != conn.id or client == conn.id:
            self.log.info(
                "Ignored disconnect request for %s from non-host %s",
                payload,
                conn.display_name,
            )
            return

        self.hub.message_helper.queue_send(
            outgoing, client, EV_DISCONNECT_BY_SERVER, payload
        )

    def _handle_ok_disconnect_me(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        # The client agreed to go after disconnectByServer.
        name = conn.display_name
        self.hub._depart_locked(
            conn.id, outgoing, message=f"{name} has disconnected", reason="by host"
        )
        self.hub.message_helper.queue_disconnect(outgoing, conn.id)

    def _handle_shutdown_p2p(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        if not isinstance(payload, str):
            raise UnknownTarget(payload)
        client = self.state.identities.id_for_name(payload)
        if client is None:
            raise UnknownTarget(payload)
        host = self.host_target(client)
        self.hub.message_helper.queue_send(
            outgoing, host, EV_SHUTDOWN_P2P_DELETE_CLIENT, payload
        )

    def _handle_command_to_all(
        self, conn: Connection, payload: Any, outgoing: list[Outbound]
    ) -> None:
        room = self.state.rooms.room_of(conn.id)
        if room is None:
            raise UnknownTarget(TO_ROOM)
        self.hub.message_helper.queue_broadcast(
            outgoing, room, EV_COMMAND_HOST_TO_ALL, payload
        )
