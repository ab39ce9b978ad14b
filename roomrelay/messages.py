"""Outbound actions and queueing helpers for the relay.

Handlers never talk to the transport directly. They append actions to an
``outgoing`` list while the state lock is held; the service hands the list to
the transport once the lock is released.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Union

from .constants import EV_CHAT_MESSAGE

if TYPE_CHECKING:
    from .service import RelayService


@dataclass(frozen=True)
class Send:
    connection_id: str
    event: str
    payload: Any


@dataclass(frozen=True)
class Broadcast:
    group: str
    event: str
    payload: Any
    exclude: str | None = None


@dataclass(frozen=True)
class JoinGroup:
    connection_id: str
    group: str


@dataclass(frozen=True)
class Disconnect:
    connection_id: str


Outbound = Union[Send, Broadcast, JoinGroup, Disconnect]


class MessageHelper:
    """Helper methods for queueing outbound actions."""

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

    def queue_send(
        self, outgoing: list[Outbound], connection_id: str, event: str, payload: Any
    ) -> None:
        self.hub.stats_manager.inc("events_out")
        outgoing.append(Send(connection_id, event, payload))

    def queue_broadcast(
        self,
        outgoing: list[Outbound],
        group: str,
        event: str,
        payload: Any,
        *,
        exclude: str | None = None,
    ) -> None:
        self.hub.stats_manager.inc("events_out")
        outgoing.append(Broadcast(group, event, payload, exclude))

    def queue_join(self, outgoing: list[Outbound], connection_id: str, group: str) -> None:
        outgoing.append(JoinGroup(connection_id, group))

    def queue_disconnect(self, outgoing: list[Outbound], connection_id: str) -> None:
        outgoing.append(Disconnect(connection_id))

    def queue_chat(self, outgoing: list[Outbound], connection_id: str, text: str) -> None:
        """A one-line advisory delivered as a ``chat message``."""
        self.queue_send(outgoing, connection_id, EV_CHAT_MESSAGE, text)
