"""Statistics tracking and the room census report."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .service import RelayService


class StatsManager:
    """
    Lifetime counters for the relay and the census report rendered for hosts.

    Counters cover connects/disconnects, identity conflicts, room joins,
    relayed traffic, dropped events and idle-monitor activity.
    """

    def __init__(self, hub: RelayService) -> None:
        self.hub = hub

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connects": 0,
            "disconnects": 0,
            "identity_conflicts": 0,
            "events_in": 0,
            "events_bad": 0,
            "events_dropped": 0,
            "events_out": 0,
            "joins": 0,
            "joins_rejected": 0,
            "chats_forwarded": 0,
            "relays": 0,
            "host_commands": 0,
            "idle_warnings": 0,
            "idle_extensions": 0,
            "idle_evictions": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self.hub._state_lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self.hub._state_lock:
            return int(self._counters.get(key, 0))

    def format_census(self, room: str | None = None) -> str:
        """
        Format a room/connection census as a multi-line report.

        ``room`` is listed first when given (the requesting host's room).
        """
        from . import __version__

        now_mono = time.monotonic()
        started_mono = self.started_monotonic
        uptime_s = (now_mono - started_mono) if started_mono is not None else 0.0

        with self.hub._state_lock:
            census = self.hub.state.census()
            c = dict(self._counters)

        rooms = census["rooms"]
        if room is not None:
            rooms = sorted(rooms, key=lambda r: r["room"] != room)

        lines: list[str] = []
        lines.append(f"roomrelay {__version__} room report")
        lines.append(
            f"uptime_s={uptime_s:.1f} connections={census['connections']} "
            f"rooms={len(rooms)} name_counter={census['name_counter']}"
        )
        for r in rooms:
            host = r["host"] if r["host"] else "(none)"
            members = ", ".join(r["members"]) if r["members"] else "(none)"
            lines.append(
                f"room {r['room']}: host={host} clients={len(r['members'])} [{members}]"
            )
        if census["unjoined"]:
            lines.append(
                f"not in a room ({len(census['unjoined'])}): "
                + ", ".join(census["unjoined"])
            )
        lines.append(
            "events: in={} out={} bad={} dropped={} joins={} joins_rejected={}".format(
                c.get("events_in", 0),
                c.get("events_out", 0),
                c.get("events_bad", 0),
                c.get("events_dropped", 0),
                c.get("joins", 0),
                c.get("joins_rejected", 0),
            )
        )
        lines.append(
            "idle: warnings={} extensions={} evictions={}".format(
                c.get("idle_warnings", 0),
                c.get("idle_extensions", 0),
                c.get("idle_evictions", 0),
            )
        )

        return "\n".join(lines)
