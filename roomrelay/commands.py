"""Host-only chat commands."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .constants import CMD_DISCONNECT_CLIENTS, CMD_ROOM_REPORT, EV_DISCONNECT_BY_SERVER
from .messages import Outbound

if TYPE_CHECKING:
    from .service import RelayService


class CommandHandler:
    """Handles the plain-text control strings a room host can type into chat."""

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub
        self.log = logging.getLogger("roomrelay.commands")

    def handle_host_command(
        self,
        connection_id: str,
        text: str,
        outgoing: list[Outbound],
    ) -> bool:
        """Handle a host command.

        Returns True if the text was a recognized command (handled, or
        rejected because the sender is not a host). Anything else returns
        False so it is broadcast as normal chat.
        """
        cmd = text.strip()
        if cmd not in (CMD_DISCONNECT_CLIENTS, CMD_ROOM_REPORT):
            return False

        state = self.hub.state
        if not state.is_host(connection_id):
            self.hub.message_helper.queue_chat(
                outgoing,
                connection_id,
                f"Sorry, only the host of a room can use the '{cmd}' command.",
            )
            self.log.info(
                "Rejected host command %r from %s",
                cmd,
                state.identities.name_of(connection_id),
            )
            return True

        self.hub.stats_manager.inc("host_commands")
        if cmd == CMD_DISCONNECT_CLIENTS:
            self._disconnect_clients(connection_id, outgoing)
        else:
            self._room_report(connection_id, outgoing)
        return True

    def _disconnect_clients(self, host_id: str, outgoing: list[Outbound]) -> None:
        state = self.hub.state
        room = state.rooms.room_of(host_id)
        clients = [cid for cid in state.rooms.members_of(room) if cid != host_id]

        for cid in clients:
            name = state.identities.name_of(cid)
            self.hub.message_helper.queue_send(
                outgoing, cid, EV_DISCONNECT_BY_SERVER, name
            )

        self.log.info(
            "Host %s disconnecting %d client(s) in room %s",
            state.identities.name_of(host_id),
            len(clients),
            room,
        )
        self.hub.message_helper.queue_chat(
            outgoing,
            host_id,
            f"Disconnecting {len(clients)} client(s) in room {room}.",
        )

    def _room_report(self, host_id: str, outgoing: list[Outbound]) -> None:
        room = self.hub.state.rooms.room_of(host_id)
        report = self.hub.stats_manager.format_census(room)
        self.hub.message_helper.queue_chat(outgoing, host_id, report)
