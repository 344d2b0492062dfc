import pytest

from miraclectl.manager import (
    LINK_IFACE,
    LINK_PREFIX,
    PEER_IFACE,
    PEER_PREFIX,
    PROPERTIES_IFACE,
    SERVICE,
    BusCallError,
    WifiManager,
    path_decode,
    path_encode,
)
from miraclectl.model import Link, Peer, Wifi, WifiEvents


class FakeBus:
    def __init__(self, replies=None, fail=None):
        self.calls = []
        self.replies = replies or {}
        self.fail = fail

    def call_method(self, destination, path, interface, member, *args):
        self.calls.append((destination, path, interface, member, args))
        if self.fail is not None:
            raise self.fail
        return self.replies.get(member)


class Recorder(WifiEvents):
    def __init__(self):
        self.seen = []

    def peer_new(self, peer):
        self.seen.append(("peer_new", peer.label))

    def peer_free(self, peer):
        self.seen.append(("peer_free", peer.label))

    def peer_provision_discovery(self, peer, prov, pin):
        self.seen.append(("prov", peer.label, prov, pin))

    def peer_go_neg_request(self, peer, prov, pin):
        self.seen.append(("go_neg", peer.label, prov, pin))

    def peer_formation_failure(self, peer, reason):
        self.seen.append(("fail", peer.label, reason))

    def peer_connected(self, peer):
        self.seen.append(("connected", peer.label))

    def peer_disconnected(self, peer):
        self.seen.append(("disconnected", peer.label))

    def link_new(self, link):
        self.seen.append(("link_new", link.label))

    def link_free(self, link):
        self.seen.append(("link_free", link.label))


LINK_PATH = path_encode(LINK_PREFIX, "3")
PEER_PATH = path_encode(PEER_PREFIX, "peer1@3")


def make_manager(replies=None, fail=None):
    events = Recorder()
    bus = FakeBus(replies, fail)
    return WifiManager(bus, Wifi(events)), bus, events


def populated():
    manager, bus, events = make_manager()
    manager.on_interfaces_added(LINK_PATH, {LINK_IFACE: {"InterfaceName": "wlan0"}})
    manager.on_interfaces_added(PEER_PATH, {PEER_IFACE: {"FriendlyName": "tv"}})
    events.seen.clear()
    return manager, bus, events


def test_path_encode_escapes_leading_digit():
    assert path_encode(LINK_PREFIX, "3") == LINK_PREFIX + "/_33"


def test_path_encode_empty_label():
    assert path_encode(LINK_PREFIX, "") == LINK_PREFIX + "/_"


@pytest.mark.parametrize("label", ["3", "", "peer1@3", "wlan0", "ab:cd@12", "Grüße"])
def test_path_round_trip(label):
    assert path_decode(path_encode(PEER_PREFIX, label), PEER_PREFIX) == label


def test_path_decode_other_prefix():
    assert path_decode(path_encode(PEER_PREFIX, "x"), LINK_PREFIX) is None
    assert path_decode(LINK_PREFIX, LINK_PREFIX) is None


def test_encoded_path_has_only_safe_chars():
    tail = path_encode(PEER_PREFIX, "a b/c@1").rsplit("/", 1)[1]
    assert all(ch.isalnum() or ch == "_" for ch in tail)


def test_fetch_builds_model():
    replies = {
        "GetManagedObjects": {
            LINK_PATH: {LINK_IFACE: {"InterfaceName": "wlan0", "Managed": True}},
            PEER_PATH: {PEER_IFACE: {"FriendlyName": "tv", "Connected": False}},
        }
    }
    manager, bus, events = make_manager(replies)
    manager.fetch()
    link = manager.wifi.find_link("3")
    assert link.ifname == "wlan0"
    assert link.managed is True
    assert manager.wifi.find_peer("peer1@3").friendly_name == "tv"
    assert events.seen == [("link_new", "3"), ("peer_new", "peer1@3")]
    assert bus.calls[0][3] == "GetManagedObjects"


def test_peer_without_link_is_ignored():
    manager, _, events = make_manager()
    manager.on_interfaces_added(PEER_PATH, {PEER_IFACE: {}})
    assert list(manager.wifi.iter_peers()) == []
    assert events.seen == []


def test_fetch_error_propagates():
    manager, _, _ = make_manager(fail=BusCallError(message="boom"))
    with pytest.raises(BusCallError, match="boom"):
        manager.fetch()


def test_bus_call_error_access_denied():
    err = BusCallError(name="org.freedesktop.DBus.Error.AccessDenied", message="x")
    assert str(err) == "Access denied"


def test_other_interfaces_do_not_update_link():
    manager, _, _ = make_manager()
    manager.on_interfaces_added(LINK_PATH, {"other.Iface": {"InterfaceName": "wlan9"}})
    assert manager.wifi.find_link("3").ifname is None


def test_interfaces_removed_removes_link_and_peers():
    manager, _, events = populated()
    manager.on_interfaces_removed(LINK_PATH, [LINK_IFACE])
    assert manager.wifi.links == []
    assert events.seen == [("peer_free", "peer1@3"), ("link_free", "3")]


def test_interfaces_removed_peer():
    manager, _, events = populated()
    manager.on_interfaces_removed(PEER_PATH, [PEER_IFACE])
    assert manager.wifi.find_peer("peer1@3") is None
    assert events.seen == [("peer_free", "peer1@3")]


def test_properties_changed_updates_and_notifies():
    manager, _, events = populated()
    manager.on_properties_changed(PEER_PATH, PEER_IFACE, {"Connected": True})
    assert manager.wifi.find_peer("peer1@3").connected is True
    assert events.seen == [("connected", "peer1@3")]


def test_properties_changed_wrong_interface_ignored():
    manager, _, _ = populated()
    manager.on_properties_changed(LINK_PATH, PEER_IFACE, {"InterfaceName": "wlan5"})
    assert manager.wifi.find_link("3").ifname == "wlan0"


def test_peer_signals_dispatch():
    manager, _, events = populated()
    manager.on_peer_signal(PEER_PATH, "ProvisionDiscovery", ["pbc", "1234"])
    manager.on_peer_signal(PEER_PATH, "GoNegRequest", ["pin", "5678"])
    manager.on_peer_signal(PEER_PATH, "FormationFailure", ["timeout"])
    manager.on_peer_signal(LINK_PATH, "FormationFailure", ["ignored"])
    assert events.seen == [
        ("prov", "peer1@3", "pbc", "1234"),
        ("go_neg", "peer1@3", "pin", "5678"),
        ("fail", "peer1@3", "timeout"),
    ]


def test_set_friendly_name_skips_same_value():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    link.friendly_name = "box"
    manager.set_friendly_name(link, "box")
    assert bus.calls == []


def test_set_friendly_name_calls_properties_set():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    manager.set_friendly_name(link, "box")
    assert bus.calls == [(SERVICE, LINK_PATH, PROPERTIES_IFACE, "Set",
                          (LINK_IFACE, "FriendlyName", ("s", "box")))]
    assert link.friendly_name is None


def test_set_wfd_subelements():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    manager.set_wfd_subelements(link, "000600111c4400c8")
    assert bus.calls[0][4] == (LINK_IFACE, "WfdSubelements", ("s", "000600111c4400c8"))


def test_set_managed_updates_model():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    manager.set_managed(link, True)
    assert link.managed is True
    assert bus.calls[0][4] == (LINK_IFACE, "Managed", ("b", True))
    manager.set_managed(link, True)
    assert len(bus.calls) == 1


def test_set_managed_failure_keeps_state():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    bus.fail = BusCallError(message="denied")
    with pytest.raises(BusCallError):
        manager.set_managed(link, True)
    assert link.managed is False


def test_set_p2p_scanning_marks_scan_only():
    manager, bus, _ = populated()
    link = manager.wifi.find_link("3")
    manager.set_p2p_scanning(link, True)
    assert link.have_p2p_scan is True
    assert link.p2p_scanning is False
    assert bus.calls[0][4] == (LINK_IFACE, "P2PScanning", ("b", True))


def test_connect_peer_defaults():
    manager, bus, _ = populated()
    peer = manager.wifi.find_peer("peer1@3")
    manager.connect_peer(peer, None, None)
    assert bus.calls == [(SERVICE, PEER_PATH, PEER_IFACE, "Connect", ("auto", ""))]


def test_disconnect_peer():
    manager, bus, _ = populated()
    peer = manager.wifi.find_peer("peer1@3")
    manager.disconnect_peer(peer)
    assert bus.calls == [(SERVICE, PEER_PATH, PEER_IFACE, "Disconnect", ())]