"""Transport capability consumed by the relay core, and its Reticulum adapter."""

from __future__ import annotations

import abc
import logging
import os
import threading
from typing import Any, Protocol

import RNS

from .config import RelayRuntimeConfig
from .constants import EV_HELLO, K_BODY, K_EVENT
from .envelope import decode, encode, make_envelope, validate_envelope
from .util import expand_path


class RelayHandler(Protocol):
    def on_connect(self, connection_id: str, hints: Any) -> None: ...

    def on_event(self, connection_id: str, event: str, payload: Any) -> None: ...

    def on_disconnect(self, connection_id: str) -> None: ...


class Transport(abc.ABC):
    """
    Delivers events to connection addresses and named groups.

    Delivery is best effort: failures are logged, never raised to the caller.
    """

    @abc.abstractmethod
    def start(self, handler: RelayHandler) -> None: ...

    @abc.abstractmethod
    def stop(self) -> None: ...

    @abc.abstractmethod
    def send(self, connection_id: str, event: str, payload: Any) -> None: ...

    @abc.abstractmethod
    def broadcast_to_group(
        self,
        group: str,
        event: str,
        payload: Any,
        exclude: str | None = None,
    ) -> None: ...

    @abc.abstractmethod
    def join_group(self, connection_id: str, group: str) -> None:
        """Place the connection in ``group``, leaving any group it was in."""

    @abc.abstractmethod
    def disconnect(self, connection_id: str) -> None: ...


class RNSTransport(Transport):
    """
    Serves relay connections as Reticulum links on a SINGLE IN destination.

    Each link speaks CBOR envelopes. The first envelope must be ``hello``
    carrying the connect hints; everything after it is a relay event.
    """

    def __init__(self, config: RelayRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("roomrelay.transport")

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None
        self.handler: RelayHandler | None = None

        # Guards the link and group tables only; relay state has its own lock.
        self._lock = threading.RLock()
        self._links: dict[str, RNS.Link] = {}
        self._greeted: set[str] = set()
        # Links whose on_connect is still running; their close is delivered
        # by the hello path once on_connect returns.
        self._connecting: set[str] = set()
        self._group_of: dict[str, str] = {}
        self._groups: dict[str, set[str]] = {}

        self._shutdown = threading.Event()
        self._announce_thread: threading.Thread | None = None

    def start(self, handler: RelayHandler) -> None:
        self.handler = handler
        self.log.info("Starting Reticulum")
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._announce_thread = threading.Thread(
                target=self._announce_loop, name="roomrelay-announce", daemon=True
            )
            self._announce_thread.start()

        self.log.info(
            "Relay listening dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex(),
        )

    def stop(self) -> None:
        self._shutdown.set()
        with self._lock:
            links = list(self._links.values())
            self._links.clear()
            self._greeted.clear()
            self._connecting.clear()
            self._group_of.clear()
            self._groups.clear()

        for link in links:
            try:
                link.teardown()
            except Exception:
                self.log.debug("Teardown failed on stop", exc_info=True)

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "roomrelay", "v": 1, "name": self.config.relay_name})
            )
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.announce_period_s)):
            self._announce_once()

    @staticmethod
    def link_id(link: RNS.Link) -> str:
        lid = getattr(link, "link_id", None)
        if isinstance(lid, (bytes, bytearray)):
            return bytes(lid).hex()
        h = getattr(link, "hash", None)
        if isinstance(h, (bytes, bytearray)):
            return bytes(h).hex()
        return f"link-{id(link):x}"

    def _on_link(self, link: RNS.Link) -> None:
        cid = self.link_id(link)
        with self._lock:
            self._links[cid] = link

        link.set_packet_callback(lambda data, pkt: self._on_packet(cid, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(cid))
        self.log.info("Link established id=%s", cid)

    def _on_packet(self, cid: str, data: bytes) -> None:
        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            self.log.debug("Bad packet id=%s bytes=%s err=%s", cid, len(data), e)
            return

        event = env[K_EVENT]
        body = env.get(K_BODY)

        with self._lock:
            if cid not in self._links:
                return
            greeted = cid in self._greeted
            if not greeted and event == EV_HELLO:
                self._greeted.add(cid)
                self._connecting.add(cid)

        if not greeted:
            if event != EV_HELLO:
                self.log.debug("Ignoring event=%r before hello id=%s", event, cid)
                return
            self._dispatch_hello(cid, body)
            return

        if event == EV_HELLO:
            self.log.debug("Ignoring repeated hello id=%s", cid)
            return
        if self.handler is not None:
            self.handler.on_event(cid, event, body)

    def _dispatch_hello(self, cid: str, body: Any) -> None:
        """Deliver on_connect, then on_disconnect if the link closed meanwhile."""
        try:
            if self.handler is not None:
                self.handler.on_connect(cid, body)
        finally:
            with self._lock:
                self._connecting.discard(cid)
                closed = cid not in self._links

        if closed:
            self.log.debug("Link closed during connect id=%s", cid)
            if self.handler is not None:
                self.handler.on_disconnect(cid)

    def _on_close(self, cid: str) -> None:
        with self._lock:
            self._links.pop(cid, None)
            greeted = cid in self._greeted
            self._greeted.discard(cid)
            connecting = cid in self._connecting
            self._leave_group(cid)

        self.log.info("Link closed id=%s", cid)
        if greeted and not connecting and self.handler is not None:
            self.handler.on_disconnect(cid)

    def _leave_group(self, cid: str) -> None:
        group = self._group_of.pop(cid, None)
        if group is None:
            return
        members = self._groups.get(group)
        if members is not None:
            members.discard(cid)
            if not members:
                self._groups.pop(group, None)

    def join_group(self, connection_id: str, group: str) -> None:
        with self._lock:
            if connection_id not in self._links:
                return
            self._leave_group(connection_id)
            self._group_of[connection_id] = group
            self._groups.setdefault(group, set()).add(connection_id)

    def send(self, connection_id: str, event: str, payload: Any) -> None:
        with self._lock:
            link = self._links.get(connection_id)
        if link is None:
            self.log.debug("Send to unknown id=%s event=%s dropped", connection_id, event)
            return
        self._send_link(connection_id, link, encode(make_envelope(event, body=payload)))

    def broadcast_to_group(
        self,
        group: str,
        event: str,
        payload: Any,
        exclude: str | None = None,
    ) -> None:
        with self._lock:
            targets = [
                (cid, self._links[cid])
                for cid in self._groups.get(group, ())
                if cid != exclude and cid in self._links
            ]
        if not targets:
            return

        data = encode(make_envelope(event, body=payload))
        for cid, link in targets:
            self._send_link(cid, link, data)

    def disconnect(self, connection_id: str) -> None:
        with self._lock:
            link = self._links.get(connection_id)
        if link is None:
            return
        try:
            link.teardown()
        except Exception:
            self.log.debug("Teardown failed id=%s", connection_id, exc_info=True)

    def _send_link(self, cid: str, link: RNS.Link, data: bytes) -> None:
        mdu = getattr(link, "MDU", None)
        if isinstance(mdu, int) and len(data) > mdu:
            self.log.warning(
                "Payload exceeds link MDU; dropped id=%s bytes=%s mdu=%s",
                cid,
                len(data),
                mdu,
            )
            return
        try:
            RNS.Packet(link, data).send()
        except OSError as e:
            self.log.warning("Send failed id=%s bytes=%s err=%s", cid, len(data), e)
        except Exception:
            self.log.debug("Send failed id=%s bytes=%s", cid, len(data), exc_info=True)

