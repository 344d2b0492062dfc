"""In-memory model of the wifi links and peers exported by the wifi daemon."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, Mapping, Optional

_DECIMAL = re.compile(r"[0-9]+")


class WifiEvents:
    """Receives notifications about changes of the model; all no-ops here."""

    def peer_new(self, peer: "Peer") -> None:
        pass

    def peer_free(self, peer: "Peer") -> None:
        pass

    def peer_provision_discovery(self, peer: "Peer", prov: str, pin: str) -> None:
        pass

    def peer_go_neg_request(self, peer: "Peer", prov: str, pin: str) -> None:
        pass

    def peer_formation_failure(self, peer: "Peer", reason: str) -> None:
        pass

    def peer_connected(self, peer: "Peer") -> None:
        pass

    def peer_disconnected(self, peer: "Peer") -> None:
        pass

    def link_new(self, link: "Link") -> None:
        pass

    def link_free(self, link: "Link") -> None:
        pass


def _string(name: str, value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError(f"property {name} must be a string, got {type(value).__name__}")
    return value


def _boolean(name: str, value: Any) -> bool:
    if not isinstance(value, (bool, int)):
        raise TypeError(f"property {name} must be a boolean, got {type(value).__name__}")
    return bool(value)


def _unsigned(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise TypeError(f"property {name} must be an unsigned integer")
    return value


_PEER_STRINGS = {
    "P2PMac": "p2p_mac",
    "FriendlyName": "friendly_name",
    "Interface": "interface",
    "LocalAddress": "local_address",
    "RemoteAddress": "remote_address",
    "WfdSubelements": "wfd_subelements",
}

_LINK_STRINGS = {
    "InterfaceName": "ifname",
    "FriendlyName": "friendly_name",
    "WfdSubelements": "wfd_subelements",
}


@dataclass(eq=False)
class Peer:
    """A remote P2P device seen on a link."""

    label: str
    link: "Link"
    p2p_mac: Optional[str] = None
    friendly_name: Optional[str] = None
    connected: bool = False
    interface: Optional[str] = None
    local_address: Optional[str] = None
    remote_address: Optional[str] = None
    wfd_subelements: Optional[str] = None

    def update(self, properties: Mapping[str, Any]) -> None:
        """Apply bus properties; unknown names are ignored.

        A change of the connected state is reported after all other
        properties have been stored.
        """
        values: dict[str, Any] = {}
        connected: Optional[bool] = None
        for name, value in properties.items():
            if name in _PEER_STRINGS:
                values[_PEER_STRINGS[name]] = _string(name, value)
            elif name == "Connected":
                connected = _boolean(name, value)
        for attr, value in values.items():
            setattr(self, attr, value)
        if connected is not None and connected != self.connected:
            self.connected = connected
            events = self.link.wifi.events
            if connected:
                events.peer_connected(self)
            else:
                events.peer_disconnected(self)


@dataclass(eq=False)
class Link:
    """A local wifi interface managed by the daemon."""

    label: str
    wifi: "Wifi"
    peers: list[Peer] = field(default_factory=list)
    have_p2p_scan: bool = False
    ifindex: int = 0
    ifname: Optional[str] = None
    friendly_name: Optional[str] = None
    managed: bool = False
    wfd_subelements: Optional[str] = None
    p2p_scanning: bool = False

    def update(self, properties: Mapping[str, Any]) -> None:
        """Apply bus properties; unknown names are ignored."""
        values: dict[str, Any] = {}
        for name, value in properties.items():
            if name in _LINK_STRINGS:
                values[_LINK_STRINGS[name]] = _string(name, value)
            elif name == "InterfaceIndex":
                index = _unsigned(name, value)
                if index:
                    values["ifindex"] = index
            elif name == "Managed":
                values["managed"] = _boolean(name, value)
            elif name == "P2PScanning":
                values["p2p_scanning"] = _boolean(name, value)
        for attr, value in values.items():
            setattr(self, attr, value)

    def find_peer(self, label: str) -> Optional[Peer]:
        """Return the peer whose label matches, ignoring case."""
        wanted = label.lower()
        return next((p for p in self.peers if p.label.lower() == wanted), None)


def _same(a: Optional[str], b: str) -> bool:
    return a is not None and a.lower() == b.lower()


class Wifi:
    """All links and their peers, with lookup by label, name or index."""

    def __init__(self, events: Optional[WifiEvents] = None):
        self.events = events if events is not None else WifiEvents()
        self.links: list[Link] = []

    # membership

    def add_link(self, link: Link) -> None:
        if link in self.links:
            return
        self.links.append(link)
        self.events.link_new(link)

    def remove_link(self, link: Link) -> None:
        while link.peers:
            self.remove_peer(link.peers[-1])
        if link in self.links:
            self.events.link_free(link)
            self.links.remove(link)

    def add_peer(self, peer: Peer) -> None:
        if peer in peer.link.peers:
            return
        peer.link.peers.append(peer)
        self.events.peer_new(peer)

    def remove_peer(self, peer: Peer) -> None:
        if peer in peer.link.peers:
            self.events.peer_free(peer)
            peer.link.peers.remove(peer)

    def iter_peers(self) -> Iterator[Peer]:
        for link in self.links:
            yield from link.peers

    def clear(self) -> None:
        while self.links:
            self.remove_link(self.links[-1])

    # lookup

    def find_link(self, label: Optional[str]) -> Optional[Link]:
        if not label:
            return None
        return next((l for l in self.links if _same(l.label, label)), None)

    def search_link(self, label: Optional[str]) -> Optional[Link]:
        if not label:
            return None
        link = self.find_link(label)
        if link is not None:
            return link
        link = next((l for l in self.links if _same(l.ifname, label)), None)
        if link is not None:
            return link
        return next((l for l in self.links if _same(l.friendly_name, label)), None)

    def find_link_by_peer(self, label: Optional[str]) -> Optional[Link]:
        if not label or "@" not in label:
            return None
        return self.find_link(label.split("@", 1)[1])

    def search_link_by_peer(self, label: Optional[str]) -> Optional[Link]:
        if not label or "@" not in label:
            return None
        return self.search_link(label.split("@", 1)[1])

    def find_peer(self, label: Optional[str]) -> Optional[Peer]:
        if not label:
            return None
        link = self.find_link_by_peer(label)
        if link is None:
            return None
        return link.find_peer(label)

    @staticmethod
    def _match_in(peers: list[Peer], label: str) -> Optional[Peer]:
        for peer in peers:
            if peer.label.startswith(label) and peer.label[len(label):len(label) + 1] == "@":
                return peer
        for peer in peers:
            if _same(peer.friendly_name, label):
                return peer
        for peer in peers:
            if _same(peer.interface, label):
                return peer
        if _DECIMAL.fullmatch(label):
            index = int(label)
            if index < len(peers):
                return peers[index]
        return None

    def search_peer(self, label: Optional[str]) -> Optional[Peer]:
        """Find a peer by label, label prefix, friendly name, interface or index."""
        if not label:
            return None
        peer = self.find_peer(label)
        if peer is not None:
            return peer
        link = self.search_link_by_peer(label)
        if link is not None:
            peer = self._match_in(link.peers, label.split("@", 1)[0])
            if peer is not None:
                return peer
        return self._match_in(list(self.iter_peers()), label)