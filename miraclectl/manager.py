"""Keeps the wifi model in sync with the wifi daemon over the message bus."""

from __future__ import annotations

import errno
import logging
import string
from typing import Any, Mapping, Optional, Protocol, Sequence

from .model import Link, Peer, Wifi
from .settings import bus_error_message

logger = logging.getLogger(__name__)

SERVICE = "org.freedesktop.miracle.wifi"
ROOT_PATH = "/org/freedesktop/miracle/wifi"
LINK_PREFIX = "/org/freedesktop/miracle/wifi/link"
PEER_PREFIX = "/org/freedesktop/miracle/wifi/peer"
LINK_IFACE = "org.freedesktop.miracle.wifi.Link"
PEER_IFACE = "org.freedesktop.miracle.wifi.Peer"
PROPERTIES_IFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_IFACE = "org.freedesktop.DBus.ObjectManager"

_LETTERS = frozenset(string.ascii_letters.encode())
_DIGITS = frozenset(string.digits.encode())
_HEXDIGITS = frozenset(string.hexdigits.encode())


def path_encode(prefix: str, label: str) -> str:
    """Build an object path from ``prefix`` and an escaped ``label``.

    Everything but ASCII letters, and digits after the first character,
    is written as ``_xx`` in hex; an empty label becomes ``_``.
    """
    if not label:
        return f"{prefix}/_"
    parts = []
    for pos, byte in enumerate(label.encode("utf-8", "surrogateescape")):
        if byte in _LETTERS or (pos > 0 and byte in _DIGITS):
            parts.append(chr(byte))
        else:
            parts.append(f"_{byte:02x}")
    return f"{prefix}/{''.join(parts)}"


def _unescape(text: str) -> str:
    if text == "_":
        return ""
    data = text.encode("utf-8", "surrogateescape")
    out = bytearray()
    pos = 0
    while pos < len(data):
        chunk = data[pos + 1:pos + 3]
        if data[pos] == ord("_") and len(chunk) == 2 and all(b in _HEXDIGITS for b in chunk):
            out.append(int(chunk, 16))
            pos += 3
        else:
            out.append(data[pos])
            pos += 1
    return out.decode("utf-8", "surrogateescape")


def path_decode(path: str, prefix: str) -> Optional[str]:
    """Return the unescaped label of ``path`` below ``prefix``, or None."""
    head = prefix + "/"
    if not path.startswith(head):
        return None
    rest = path[len(head):]
    if not rest:
        return None
    return _unescape(rest)


class BusCallError(Exception):
    """A method call on the bus failed."""

    def __init__(self, name: Optional[str] = None, message: Optional[str] = None,
                 error: int = errno.EIO):
        self.name = name
        self.message = message
        self.error = error
        super().__init__(bus_error_message(name, message, error))


class Bus(Protocol):
    """What the manager needs from a bus connection.

    Variant arguments are passed as ``(signature, value)`` tuples. A failed
    call raises :class:`BusCallError`.
    """

    def call_method(self, destination: str, path: str, interface: str,
                    member: str, *args: Any) -> Any:
        """Call ``member`` on the remote object and return its reply."""
        ...


class WifiManager:
    """Feeds bus objects and signals into a :class:`Wifi` model."""

    def __init__(self, bus: Bus, wifi: Optional[Wifi] = None):
        self.bus = bus
        self.wifi = wifi if wifi is not None else Wifi()

    def _call(self, path: str, interface: str, member: str, *args: Any,
              what: str) -> Any:
        try:
            return self.bus.call_method(SERVICE, path, interface, member, *args)
        except BusCallError as exc:
            logger.error("%s: %s", what, exc)
            raise

    def fetch(self) -> None:
        """Load all objects the daemon currently manages."""
        objects = self._call(ROOT_PATH, OBJECT_MANAGER_IFACE, "GetManagedObjects",
                             what="cannot retrieve objects")
        for path, interfaces in objects.items():
            self.on_interfaces_added(path, interfaces)

    # signals

    def on_interfaces_added(self, path: str,
                            interfaces: Mapping[str, Mapping[str, Any]]) -> None:
        label = path_decode(path, LINK_PREFIX)
        if label is not None:
            if self.wifi.find_link(label) is None:
                link = Link(label, self.wifi)
                props = interfaces.get(LINK_IFACE)
                if props is not None:
                    link.update(props)
                self.wifi.add_link(link)
            return

        label = path_decode(path, PEER_PREFIX)
        if label is not None and self.wifi.find_peer(label) is None:
            link = self.wifi.find_link_by_peer(label)
            if link is None:
                return
            peer = Peer(label, link)
            props = interfaces.get(PEER_IFACE)
            if props is not None:
                peer.update(props)
            self.wifi.add_peer(peer)

    def on_interfaces_removed(self, path: str, interfaces: Sequence[str] = ()) -> None:
        label = path_decode(path, LINK_PREFIX)
        if label is not None:
            link = self.wifi.find_link(label)
            if link is not None:
                self.wifi.remove_link(link)
            return

        label = path_decode(path, PEER_PREFIX)
        if label is not None:
            peer = self.wifi.find_peer(label)
            if peer is not None:
                self.wifi.remove_peer(peer)

    def on_properties_changed(self, path: str, interface: str,
                              changed: Mapping[str, Any]) -> None:
        label = path_decode(path, LINK_PREFIX)
        if label is not None:
            link = self.wifi.find_link(label)
            if link is not None and interface == LINK_IFACE:
                link.update(changed)
            return

        label = path_decode(path, PEER_PREFIX)
        if label is not None:
            peer = self.wifi.find_peer(label)
            if peer is not None and interface == PEER_IFACE:
                peer.update(changed)

    def on_peer_signal(self, path: str, member: str, args: Sequence[Any]) -> None:
        label = path_decode(path, PEER_PREFIX)
        if label is None:
            return
        peer = self.wifi.find_peer(label)
        if peer is None:
            return
        events = self.wifi.events
        if member == "ProvisionDiscovery":
            prov, pin = args
            events.peer_provision_discovery(peer, prov, pin)
        elif member == "GoNegRequest":
            prov, pin = args
            events.peer_go_neg_request(peer, prov, pin)
        elif member == "FormationFailure":
            (reason,) = args
            events.peer_formation_failure(peer, reason)

    # link properties

    def _set_link_property(self, link: Link, name: str, signature: str, value: Any,
                           what: str) -> None:
        self._call(path_encode(LINK_PREFIX, link.label), PROPERTIES_IFACE, "Set",
                   LINK_IFACE, name, (signature, value),
                   what=f"cannot change {what} on link {link.label} to {value}")

    def set_friendly_name(self, link: Link, name: str) -> None:
        if link.friendly_name == name:
            return
        self._set_link_property(link, "FriendlyName", "s", name, "friendly-name")

    def set_wfd_subelements(self, link: Link, value: str) -> None:
        if link.wfd_subelements == value:
            return
        self._set_link_property(link, "WfdSubelements", "s", value, "WfdSubelements")

    def set_managed(self, link: Link, value: bool) -> None:
        if link.managed == value:
            return
        self._set_link_property(link, "Managed", "b", value, "managed state")
        link.managed = value

    def set_p2p_scanning(self, link: Link, value: bool) -> None:
        """Request a scan change; the model follows the daemon's own report."""
        if link.p2p_scanning == value:
            return
        self._set_link_property(link, "P2PScanning", "b", value, "p2p-scanning state")
        if value:
            link.have_p2p_scan = True

    # peers

    def connect_peer(self, peer: Peer, prov: Optional[str] = "auto",
                     pin: Optional[str] = "") -> None:
        self._call(path_encode(PEER_PREFIX, peer.label), PEER_IFACE, "Connect",
                   prov or "auto", pin or "",
                   what=f"cannot connect peer {peer.label}")

    def disconnect_peer(self, peer: Peer) -> None:
        self._call(path_encode(PEER_PREFIX, peer.label), PEER_IFACE, "Disconnect",
                   what=f"cannot disconnect peer {peer.label}")