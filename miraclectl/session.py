"""Sink session state: follows the running link and peer and drives the player."""

from __future__ import annotations

import dataclasses
import logging
import subprocess
import threading
from typing import Callable, Optional

from .cli import Cli, Severity
from .manager import BusCallError, WifiManager
from .model import Link, Peer, WifiEvents
from .player import PlayerConfig, launch_player
from .sink import Sink

logger = logging.getLogger(__name__)

WFD_SUBELEMENTS = "000600111c4400c8"
GO_NEG_TIMEOUT = 60.0

_DEFAULT = "\x1b[0m"
_RED = "\x1b[0;91m"
_GREEN = "\x1b[0;92m"
_YELLOW = "\x1b[0;93m"


class Timer:
    """A one-shot timer that can be re-armed and cancelled."""

    def __init__(self, callback: Callable[[], None]):
        self.callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()

    def schedule(self, delay: float) -> None:
        """Arm the timer to fire ``delay`` seconds from now, replacing any earlier arming."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(delay, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def _fire(self) -> None:
        with self._lock:
            if self._timer is not threading.current_thread():
                return
            self._timer = None
        self.callback()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def pending(self) -> bool:
        return self._timer is not None


class SinkSession(WifiEvents):
    """Reacts to wifi events: runs on one link, accepts one peer, starts the player."""

    def __init__(self, manager: WifiManager, sink: Sink, player: Optional[PlayerConfig] = None,
                 cli: Optional[Cli] = None,
                 timer_factory: Optional[Callable[[Callable[[], None]], Timer]] = None):
        self.manager = manager
        self.sink = sink
        self.player = player if player is not None else PlayerConfig()
        self.cli = cli if cli is not None else Cli((), interactive=False, out=None)
        factory = timer_factory if timer_factory is not None else Timer
        self.scan_timer = factory(self.scan_timeout)
        self.sink_timer = factory(self.sink_timeout)
        self.sink_timeout_time = 0
        self.is_sink_connected = False
        self.process: Optional[subprocess.Popen] = None
        self.bound_link: Optional[str] = None
        self.running_link: Optional[Link] = None
        self.running_peer: Optional[Peer] = None
        self.pending_peer: Optional[Peer] = None
        sink.on_resolution = lambda _sink: self.sink_resolution_set()
        manager.wifi.events = self

    # helpers

    def _scan(self, link: Link, value: bool) -> None:
        try:
            self.manager.set_p2p_scanning(link, value)
        except BusCallError:
            pass

    def _say(self, tag: str, color: str, text: str) -> None:
        if self.cli.running():
            self.cli.printf(f"[{color}{tag}{_DEFAULT}] {text}\n")

    def _ours(self, peer: Peer) -> bool:
        return peer.link is self.running_link and bool(peer.wfd_subelements)

    def _leave_peer(self, peer: Peer) -> None:
        self.cli.printf(f"no longer running on peer {peer.label}\n")
        self.sink_timer.cancel()
        self.kill_player()
        self.sink.close()
        self.running_peer = None
        self.scan_timer.cancel()
        self._scan(peer.link, True)

    # link selection

    def run_on(self, link: Link) -> None:
        """Start running the sink on ``link`` unless already running somewhere."""
        if self.running_link is not None:
            return
        self.running_link = link
        try:
            self.manager.set_wfd_subelements(link, WFD_SUBELEMENTS)
        except BusCallError:
            pass
        self._scan(link, True)
        self.cli.printf(f"now running on link {link.label}\n")

    def bind(self, name: str) -> Optional[Link]:
        """Remember ``name`` and run on that link now or once it appears."""
        self.bound_link = name
        link = self.manager.wifi.search_link(name)
        if link is None:
            return None
        if not link.managed:
            self.cli.printf(f"link {link.label} not managed\n")
            return None
        self.run_on(link)
        return link

    # timeouts

    def scan_timeout(self) -> None:
        self.scan_timer.cancel()
        if self.pending_peer is not None:
            if self.cli.running():
                self.cli.printf(f"[{_RED}TIMEOUT{_DEFAULT}] waiting for "
                                f"{self.pending_peer.friendly_name}\n")
            self.pending_peer = None
        if self.running_link is not None:
            self._scan(self.running_link, True)

    def sink_timeout(self) -> None:
        self.sink_timer.cancel()
        peer = self.running_peer
        if peer is None or not peer.connected or not self.sink.is_closed():
            return
        try:
            self.sink.connect(peer.remote_address)
        except (ValueError, OSError) as exc:
            attempt = self.sink_timeout_time
            self.sink_timeout_time += 1
            if attempt >= 3:
                self.cli.error(f"cannot connect sink: {exc}")
            else:
                self.sink_timer.schedule(float(self.sink_timeout_time))

    # sink notifications

    def sink_connected(self) -> None:
        self.cli.notice("SINK connected")
        self.is_sink_connected = True

    def sink_disconnected(self) -> None:
        if not self.is_sink_connected:
            # a hang-up before the session was up counts as a timeout
            self.sink_timeout()
        else:
            self.cli.notice("SINK disconnected")
            self.is_sink_connected = False

    def sink_resolution_set(self) -> None:
        self.cli.printf(f"SINK set resolution {self.sink.hres}x{self.sink.vres}\n")
        if self.is_sink_connected:
            self.spawn_player()

    # player

    def spawn_player(self) -> None:
        if self.process is not None:
            return
        config = dataclasses.replace(
            self.player,
            uibc_enabled=self.sink.uibc_enabled,
            uibc_port=self.sink.uibc_port,
            debug=self.cli.max_severity >= Severity.DEBUG,
        )
        try:
            self.process = launch_player(config, self.sink.target,
                                         self.sink.hres, self.sink.vres)
        except (OSError, ValueError) as exc:
            self.cli.error(f"cannot start player: {exc}")

    def kill_player(self) -> None:
        if self.process is None:
            return
        self.process.terminate()
        self.process = None

    def stop_scans(self) -> None:
        """Stop every scan this program started."""
        for link in list(self.manager.wifi.links):
            if link.have_p2p_scan:
                self._scan(link, False)

    # wifi events

    def peer_new(self, peer: Peer) -> None:
        if self._ours(peer):
            self._say("ADD", _GREEN, f"Peer: {peer.label}")

    def peer_free(self, peer: Peer) -> None:
        if not self._ours(peer):
            return
        if peer is self.pending_peer:
            self.cli.printf(f"no longer waiting for peer {peer.friendly_name} ({peer.label})\n")
            self.pending_peer = None
            self.scan_timer.cancel()
            self._scan(peer.link, True)
        if peer is self.running_peer:
            self._leave_peer(peer)
        self._say("REMOVE", _RED, f"Peer: {peer.label}")

    def peer_provision_discovery(self, peer: Peer, prov: str, pin: str) -> None:
        if self._ours(peer):
            self._say("PROV", _YELLOW, f"Peer: {peer.label} Type: {prov} PIN: {pin}")

    def peer_go_neg_request(self, peer: Peer, prov: str, pin: str) -> None:
        if not self._ours(peer):
            return
        self._say("GO NEG", _YELLOW, f"Peer: {peer.label} Type: {prov} PIN: {pin}")
        if self.running_peer is None:
            try:
                self.manager.connect_peer(peer, "auto", "")
            except BusCallError:
                pass
            self.pending_peer = peer
            # group formation and DHCP with some devices can take up to 30s
            self.scan_timer.schedule(GO_NEG_TIMEOUT)

    def peer_formation_failure(self, peer: Peer, reason: str) -> None:
        if not self._ours(peer):
            return
        self._say("FAIL", _YELLOW, f"Peer: {peer.label} Reason: {reason}")
        if self.running_peer is None:
            self.scan_timer.cancel()
            self._scan(peer.link, True)

    def peer_connected(self, peer: Peer) -> None:
        if not self._ours(peer):
            return
        self._say("CONNECT", _GREEN, f"Peer: {peer.label}")
        self.pending_peer = None
        if self.running_peer is None:
            self.running_peer = peer
            self.cli.printf(f"now running on peer {peer.label}\n")
            self.scan_timer.cancel()
            self.is_sink_connected = False
            self.sink_timeout_time = 1
            self.sink_timer.schedule(float(self.sink_timeout_time))

    def peer_disconnected(self, peer: Peer) -> None:
        if not self._ours(peer):
            return
        if peer is self.running_peer:
            self._leave_peer(peer)
        self._say("DISCONNECT", _YELLOW, f"Peer: {peer.label}")

    def link_new(self, link: Link) -> None:
        self._say("ADD", _GREEN, f"Link: {link.label}")
        if self.running_link is None and self.bound_link:
            found = self.manager.wifi.search_link(self.bound_link)
            if found is not None:
                self.run_on(found)

    def link_free(self, link: Link) -> None:
        if link is self.running_link:
            self.cli.printf(f"no longer running on link {link.label}\n")
            self.running_link = None
            self.scan_timer.cancel()
        self._say("REMOVE", _RED, f"Link: {link.label}")