"""Failures raised by the identity registry, room directory and router.

All of them are scoped to the single connection/event that triggered them;
the service decides which ones reach the initiating connection.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relay-level failures."""


class IdentityConflict(RelayError):
    """A reattach asked for a display name bound to another live connection."""

    def __init__(self, name: str, owner: str) -> None:
        super().__init__(f"name {name!r} is already in use")
        self.name = name
        self.owner = owner


class RoomAlreadyHosted(RelayError):
    def __init__(self, room: str) -> None:
        super().__init__(f"Sorry, there is already a host for room {room}.")
        self.room = room


class NoHostForRoom(RelayError):
    def __init__(self, room: str) -> None:
        super().__init__(f"Sorry, there is no host yet for room {room}.")
        self.room = room


class UnknownTarget(RelayError):
    def __init__(self, to: object) -> None:
        super().__init__(f"no such target {to!r}")
        self.to = to
