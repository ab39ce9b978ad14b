"""Idle lifecycle monitor for relay connections.

Each connection carries two alarms: a warning at half of its idle budget and
a disconnect at the full budget. Qualifying traffic re-arms both. A room host
that still has other connections around is granted extensions instead of
being dropped, up to a hard cap.
"""

from __future__ import annotations

import enum
import heapq
import itertools
import logging
import threading
import time
from typing import TYPE_CHECKING, Callable, Protocol

if TYPE_CHECKING:
    from .service import RelayService
    from .session import Connection


class IdleState(enum.Enum):
    ACTIVE = "active"
    WARNING_SCHEDULED = "warning-scheduled"
    WARNED = "warned"
    DISCONNECTING = "disconnecting"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay_s: float, fn: Callable[[], None]) -> TimerHandle: ...


class _ScheduledCall:
    __slots__ = ("fn", "cancelled")

    def __init__(self, fn: Callable[[], None]) -> None:
        self.fn = fn
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ThreadScheduler:
    """
    Runs callbacks on one daemon worker thread, in deadline order.

    Pending calls sit in a heap keyed by monotonic deadline. Cancelled calls
    stay in the heap until they reach the top or a compaction drops them.
    """

    # Rebuild the heap once it is this large and mostly cancelled.
    _COMPACT_AT = 256

    def __init__(self, name: str = "roomrelay-timer") -> None:
        self.name = name
        self.log = logging.getLogger("roomrelay.scheduler")
        self._cond = threading.Condition()
        self._heap: list[tuple[float, int, _ScheduledCall]] = []
        self._seq = itertools.count()
        self._thread: threading.Thread | None = None
        self._stopped = False

    def call_later(self, delay_s: float, fn: Callable[[], None]) -> _ScheduledCall:
        call = _ScheduledCall(fn)
        when = time.monotonic() + max(0.0, float(delay_s))
        with self._cond:
            if self._stopped:
                call.cancel()
                return call
            if self._thread is None:
                self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
                self._thread.start()
            self._compact_locked()
            heapq.heappush(self._heap, (when, next(self._seq), call))
            self._cond.notify()
        return call

    def stop(self) -> None:
        with self._cond:
            self._stopped = True
            self._heap.clear()
            self._cond.notify()

    def _compact_locked(self) -> None:
        if len(self._heap) < self._COMPACT_AT:
            return
        live = [entry for entry in self._heap if not entry[2].cancelled]
        if len(live) * 2 <= len(self._heap):
            heapq.heapify(live)
            self._heap = live

    def _next_due(self) -> _ScheduledCall | None:
        with self._cond:
            while not self._stopped:
                if not self._heap:
                    self._cond.wait()
                    continue
                when, _, call = self._heap[0]
                if call.cancelled:
                    heapq.heappop(self._heap)
                    continue
                delay = when - time.monotonic()
                if delay > 0:
                    self._cond.wait(delay)
                    continue
                heapq.heappop(self._heap)
                return call
        return None

    def _run(self) -> None:
        while True:
            call = self._next_due()
            if call is None:
                return
            if call.cancelled:
                continue
            try:
                call.fn()
            except Exception:
                self.log.exception("Scheduled callback failed")


def _minutes(seconds: float) -> str:
    return f"{seconds / 60.0:g}min"


class IdleMonitor:
    """
    Per-connection warning/disconnect alarms.

    ``arm`` and ``touch`` must be called with the relay state lock held.
    Alarm callbacks fire on scheduler threads and take the lock themselves.
    """

    def __init__(self, hub: RelayService, scheduler: Scheduler) -> None:
        self.hub = hub
        self.scheduler = scheduler
        self.log = logging.getLogger("roomrelay.idle")

    @property
    def budget_s(self) -> float:
        return float(self.hub.config.idle_budget_s)

    @property
    def extension_s(self) -> float:
        return float(self.hub.config.idle_extension_s)

    @property
    def cap_s(self) -> float:
        return float(self.hub.config.idle_cap_s)

    def arm(self, conn: Connection) -> None:
        """Cancel any pending alarms and schedule both from the base budget."""
        if conn.closed or self.budget_s <= 0:
            return

        conn.cancel_timers()
        conn.idle_generation += 1
        conn.idle_budget_s = self.budget_s
        conn.idle_state = IdleState.ACTIVE

        cid = conn.id
        gen = conn.idle_generation
        conn.warning_timer = self.scheduler.call_later(
            self.budget_s / 2.0, lambda: self._on_warning(cid, gen)
        )
        conn.disconnect_timer = self.scheduler.call_later(
            self.budget_s, lambda: self._on_disconnect(cid, gen)
        )
        conn.idle_state = IdleState.WARNING_SCHEDULED

    def touch(self, conn: Connection) -> None:
        """Qualifying traffic: reset to active and re-arm both alarms."""
        self.arm(conn)

    def _current(self, cid: str, gen: int) -> Connection | None:
        conn = self.hub.state.get(cid)
        if conn is None or conn.closed or conn.idle_generation != gen:
            return None
        return conn

    def _on_warning(self, cid: str, gen: int) -> None:
        outgoing = []
        with self.hub._state_lock:
            conn = self._current(cid, gen)
            if conn is None:
                return

            conn.warning_timer = None
            conn.idle_state = IdleState.WARNED
            remaining = conn.idle_budget_s - self.budget_s / 2.0
            self.hub.message_helper.queue_chat(
                outgoing,
                cid,
                f"Idle for {_minutes(self.budget_s / 2.0)}. "
                f"This socket will be disconnected in {_minutes(remaining)} "
                "unless there is chat activity.",
            )
            self.hub.stats_manager.inc("idle_warnings")

        self.log.info("Idle warning sent name=%s id=%s", conn.display_name, cid)
        self.hub._flush(outgoing)

    def _on_disconnect(self, cid: str, gen: int) -> None:
        outgoing = []
        with self.hub._state_lock:
            conn = self._current(cid, gen)
            if conn is None:
                return

            conn.disconnect_timer = None
            state = self.hub.state
            if state.is_host(cid):
                others = state.others_live(cid)
                # An extension that adds nothing would re-fire at once, forever.
                if others > 0 and self.extension_s > 0 and conn.idle_budget_s < self.cap_s:
                    conn.idle_budget_s = min(
                        conn.idle_budget_s + self.extension_s, self.cap_s
                    )
                    conn.disconnect_timer = self.scheduler.call_later(
                        self.extension_s, lambda: self._on_disconnect(cid, gen)
                    )
                    self.hub.stats_manager.inc("idle_extensions")
                    self.log.info(
                        "Idle host kept name=%s others=%s budget=%s",
                        conn.display_name,
                        others,
                        _minutes(conn.idle_budget_s),
                    )
                    return

            conn.idle_state = IdleState.DISCONNECTING
            name = conn.display_name
            self.hub._evict_locked(
                cid,
                outgoing,
                notice=f"Idle for {_minutes(conn.idle_budget_s)}. Socket disconnected.",
            )
            self.hub.stats_manager.inc("idle_evictions")

        self.log.info("Idle connection evicted name=%s id=%s", name, cid)
        self.hub._flush(outgoing)
