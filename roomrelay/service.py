from __future__ import annotations

import logging
import signal
import threading
from typing import Any

from .commands import CommandHandler
from .config import RelayRuntimeConfig
from .constants import (
    EV_CHAT_MESSAGE,
    EV_CLIENT_DISCONNECTED,
    EV_YOUR_NAME_IS,
)
from .errors import IdentityConflict
from .idle import IdleMonitor, Scheduler, ThreadScheduler
from .messages import Broadcast, Disconnect, JoinGroup, MessageHelper, Outbound, Send
from .router import MessageRouter
from .session import ConnectHints, Departure, SessionState
from .stats import StatsManager
from .transport import Transport


class RelayService:
    def __init__(
        self,
        config: RelayRuntimeConfig,
        transport: Transport,
        *,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.config = config
        self.transport = transport
        self.log = logging.getLogger("roomrelay.relay")

        # Shared state is touched from transport callbacks and idle timer
        # threads. Guard it with a single re-entrant lock; never hold it while
        # handing actions to the transport.
        self._state_lock = threading.RLock()
        self._shutdown = threading.Event()

        self._own_scheduler = ThreadScheduler() if scheduler is None else None
        self.scheduler: Scheduler = scheduler or self._own_scheduler

        self.state = SessionState(idle_budget_s=config.idle_budget_s)

        self.stats_manager = StatsManager(self)
        self.message_helper = MessageHelper(self)
        self.router = MessageRouter(self)
        self.command_handler = CommandHandler(self)
        self.idle_monitor = IdleMonitor(self, self.scheduler)

        self._startup_notice_timer: Any = None

    def start(self) -> None:
        self.stats_manager.set_start_time()
        self.transport.start(self)

        if self.config.startup_notice and self.config.startup_notice_delay_s >= 0:
            self._startup_notice_timer = self.scheduler.call_later(
                self.config.startup_notice_delay_s, self._startup_broadcast
            )

        self.log.info(
            "Policy idle_budget_s=%s idle_extension_s=%s idle_cap_s=%s "
            "nick_max_chars=%s max_room_name_len=%s",
            self.config.idle_budget_s,
            self.config.idle_extension_s,
            self.config.idle_cap_s,
            self.config.nick_max_chars,
            self.config.max_room_name_len,
        )

    def run_forever(self) -> None:
        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.wait(0.25):
            pass

    def stop(self) -> None:
        self._shutdown.set()
        if self._startup_notice_timer is not None:
            self._startup_notice_timer.cancel()

        with self._state_lock:
            ids = self.state.clear_all()

        self.log.info("Stopping relay connections=%s", len(ids))
        if self._own_scheduler is not None:
            self._own_scheduler.stop()
        self.transport.stop()

    # Transport callbacks

    def on_connect(self, connection_id: str, hints: Any) -> None:
        outgoing: list[Outbound] = []
        with self._state_lock:
            self._on_connect_locked(connection_id, hints, outgoing)
        self._flush(outgoing)

    def _on_connect_locked(
        self, connection_id: str, hints: Any, outgoing: list[Outbound]
    ) -> None:
        if not isinstance(hints, ConnectHints):
            hints = ConnectHints.from_body(hints, nick_max_chars=self.config.nick_max_chars)

        try:
            conn = self.state.connect(connection_id, hints)
        except IdentityConflict as e:
            self.stats_manager.inc("identity_conflicts")
            self.log.warning(
                "Reattach refused name=%s id=%s owner=%s",
                e.name,
                connection_id,
                e.owner,
            )
            self.message_helper.queue_chat(
                outgoing,
                connection_id,
                f"Sorry, the name {e.name} is already in use. "
                "Reconnect without it to get a fresh name.",
            )
            self.message_helper.queue_disconnect(outgoing, connection_id)
            return

        self.stats_manager.inc("connects")
        self.idle_monitor.arm(conn)

        ids = self.state.identities
        self.message_helper.queue_send(
            outgoing,
            connection_id,
            EV_YOUR_NAME_IS,
            {
                "name": conn.display_name,
                "nickName": ids.nick_of(connection_id),
                "teamName": ids.team_of(connection_id),
            },
        )
        self.log.info(
            "New client name=%s nick=%r team=%r mode=%s id=%s connections=%s",
            conn.display_name,
            ids.nick_of(connection_id),
            ids.team_of(connection_id),
            hints.mode,
            connection_id,
            len(self.state),
        )

    def on_event(self, connection_id: str, event: str, payload: Any) -> None:
        outgoing: list[Outbound] = []
        with self._state_lock:
            self.router.route_event(connection_id, event, payload, outgoing)

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug(
                "Sending %d action(s) for event=%r id=%s",
                len(outgoing),
                event,
                connection_id,
            )
        self._flush(outgoing)

    def on_disconnect(self, connection_id: str) -> None:
        outgoing: list[Outbound] = []
        with self._state_lock:
            departure = self._depart_locked(connection_id, outgoing, reason="by self")
        if departure is None:
            return
        self._flush(outgoing)

    # Departures

    def _depart_locked(
        self,
        connection_id: str,
        outgoing: list[Outbound],
        *,
        message: str | None = None,
        reason: str,
    ) -> Departure | None:
        """
        Remove a connection and tell its room host.

        Routing targets are captured before any state is cleared. A second
        call for the same connection is a no-op and returns None.
        """
        departure = self.state.capture_departure(connection_id)
        if departure is None:
            return None

        self.stats_manager.inc("disconnects")
        text = message if message is not None else f"{departure.label} has disconnected."
        self.log.info("%s (%s, %s)", text, reason, connection_id)

        host = departure.notify_host
        if host is not None:
            self.message_helper.queue_chat(outgoing, host, text)
            self.message_helper.queue_send(
                outgoing, host, EV_CLIENT_DISCONNECTED, departure.display_name
            )
        return departure

    def _evict_locked(
        self, connection_id: str, outgoing: list[Outbound], *, notice: str
    ) -> None:
        """Forced removal: notice, departure, then drop the transport session."""
        self.message_helper.queue_chat(outgoing, connection_id, notice)
        self._depart_locked(connection_id, outgoing, reason="by server")
        self.message_helper.queue_disconnect(outgoing, connection_id)

    def _startup_broadcast(self) -> None:
        self._startup_notice_timer = None
        outgoing: list[Outbound] = []
        with self._state_lock:
            for cid in list(self.state.connections):
                self.message_helper.queue_send(
                    outgoing, cid, EV_CHAT_MESSAGE, self.config.startup_notice
                )
        self.log.info("Startup notice sent to %d connection(s)", len(outgoing))
        self._flush(outgoing)

    # Delivery

    def _flush(self, outgoing: list[Outbound]) -> None:
        for action in outgoing:
            try:
                if isinstance(action, Send):
                    self.transport.send(action.connection_id, action.event, action.payload)
                elif isinstance(action, Broadcast):
                    self.transport.broadcast_to_group(
                        action.group, action.event, action.payload, action.exclude
                    )
                elif isinstance(action, JoinGroup):
                    self.transport.join_group(action.connection_id, action.group)
                elif isinstance(action, Disconnect):
                    self.transport.disconnect(action.connection_id)
            except Exception:
                self.log.warning("Transport action failed: %r", action, exc_info=True)
