from __future__ import annotations

from typing import Any, Callable

import pytest

from roomrelay.config import RelayRuntimeConfig
from roomrelay.service import RelayService
from roomrelay.transport import RelayHandler, Transport


class FakeTransport(Transport):
    """Records deliveries per recipient; models groups like the real adapter."""

    def __init__(self) -> None:
        self.handler: RelayHandler | None = None
        self.connected: set[str] = set()
        self.group_of: dict[str, str] = {}
        self.sent: list[tuple[str, str, Any]] = []
        self.disconnected: list[str] = []

    # Transport

    def start(self, handler: RelayHandler) -> None:
        self.handler = handler

    def stop(self) -> None:
        self.connected.clear()
        self.group_of.clear()

    def send(self, connection_id: str, event: str, payload: Any) -> None:
        if connection_id in self.connected:
            self.sent.append((connection_id, event, payload))

    def broadcast_to_group(
        self, group: str, event: str, payload: Any, exclude: str | None = None
    ) -> None:
        for cid in sorted(self.connected):
            if self.group_of.get(cid) == group and cid != exclude:
                self.sent.append((cid, event, payload))

    def join_group(self, connection_id: str, group: str) -> None:
        if connection_id in self.connected:
            self.group_of[connection_id] = group

    def disconnect(self, connection_id: str) -> None:
        self.disconnected.append(connection_id)
        if connection_id in self.connected:
            self.close(connection_id)

    # Client side

    def open(self, connection_id: str, **hints: Any) -> None:
        self.connected.add(connection_id)
        assert self.handler is not None
        self.handler.on_connect(connection_id, hints)

    def emit(self, connection_id: str, event: str, payload: Any = None) -> None:
        assert self.handler is not None
        self.handler.on_event(connection_id, event, payload)

    def close(self, connection_id: str) -> None:
        self.connected.discard(connection_id)
        self.group_of.pop(connection_id, None)
        assert self.handler is not None
        self.handler.on_disconnect(connection_id)

    def received(self, connection_id: str, event: str | None = None) -> list[Any]:
        return [
            payload
            for cid, ev, payload in self.sent
            if cid == connection_id and (event is None or ev == event)
        ]

    def recipients(self, event: str) -> list[str]:
        return [cid for cid, ev, _ in self.sent if ev == event]

    def clear(self) -> None:
        self.sent.clear()


class _ManualTimer:
    def __init__(self, when: float, fn: Callable[[], None]) -> None:
        self.when = when
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Simulated clock; timers fire only inside ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[_ManualTimer] = []

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> _ManualTimer:
        t = _ManualTimer(self.now + float(delay_s), fn)
        self._timers.append(t)
        return t

    def pending(self) -> list[_ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + float(seconds)
        while True:
            due = [t for t in self._timers if not t.cancelled and t.when <= target]
            if not due:
                break
            t = min(due, key=lambda x: x.when)
            self._timers.remove(t)
            self.now = t.when
            t.fn()
        self.now = target


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_relay(transport: FakeTransport, scheduler: ManualScheduler):
    def _make(**overrides: Any) -> RelayService:
        overrides.setdefault("startup_notice", None)
        cfg = RelayRuntimeConfig(**overrides)
        svc = RelayService(cfg, transport, scheduler=scheduler)
        svc.start()
        return svc

    return _make


@pytest.fixture
def relay(make_relay) -> RelayService:
    return make_relay()


@pytest.fixture
def hosted_room(relay: RelayService, transport: FakeTransport) -> RelayService:
    """Room ``r1`` hosted by c1 (Alice, team Red) with clients c2 (Bob) and c3."""
    transport.open("c1", mode="normal", nickName="Alice", teamName="Red")
    transport.open("c2", mode="normal", nickName="Bob")
    transport.open("c3", mode="normal")
    transport.emit("c1", "roomJoin", {"roomName": "r1", "hostOrClient": "host"})
    transport.emit("c2", "roomJoin", {"roomName": "r1", "hostOrClient": "client"})
    transport.emit("c3", "roomJoin", {"roomName": "r1"})
    transport.clear()
    return relay
