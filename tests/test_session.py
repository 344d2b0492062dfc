import io
import signal
import subprocess
import sys
import threading
from types import SimpleNamespace

import pytest

from miraclectl.cli import Cli
from miraclectl.manager import BusCallError, WifiManager
from miraclectl.model import Link, Peer
from miraclectl.player import PlayerConfig
from miraclectl.session import WFD_SUBELEMENTS, SinkSession, Timer
from miraclectl.sink import Sink


class FakeBus:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def call_method(self, destination, path, interface, member, *args):
        self.calls.append((member, args))
        if self.fail:
            raise BusCallError(message="failed")
        return {}


class FakeTimer:
    def __init__(self, callback):
        self.callback = callback
        self.delays = []
        self.active = False

    def schedule(self, delay):
        self.delays.append(delay)
        self.active = True

    def cancel(self):
        self.active = False

    def pending(self):
        return self.active


def make_env(fail=False):
    bus = FakeBus(fail)
    manager = WifiManager(bus)
    sink = Sink()
    out = io.StringIO()
    cli = Cli((), interactive=False, out=out)
    session = SinkSession(manager, sink, PlayerConfig(), cli, FakeTimer)
    link = Link("1", manager.wifi, managed=True)
    manager.wifi.add_link(link)
    return SimpleNamespace(bus=bus, manager=manager, sink=sink, out=out,
                           session=session, link=link)


def add_peer(env, label="peer1@1", **kwargs):
    peer = Peer(label, env.link, wfd_subelements=WFD_SUBELEMENTS, **kwargs)
    env.manager.wifi.add_peer(peer)
    return peer


@pytest.fixture
def env():
    return make_env()


def test_run_on_sets_subelements_and_scanning(env):
    env.session.run_on(env.link)
    assert env.session.running_link is env.link
    props = [args[1] for member, args in env.bus.calls if member == "Set"]
    assert props == ["WfdSubelements", "P2PScanning"]
    assert "now running on link 1" in env.out.getvalue()


def test_run_on_ignored_when_running(env):
    other = Link("2", env.manager.wifi, managed=True)
    env.manager.wifi.add_link(other)
    env.session.run_on(env.link)
    env.session.run_on(other)
    assert env.session.running_link is env.link


def test_run_on_survives_bus_errors():
    env = make_env(fail=True)
    env.session.run_on(env.link)
    assert env.session.running_link is env.link


def test_bind_runs_when_link_appears(env):
    assert env.session.bind("wlan7") is None
    assert env.session.running_link is None
    later = Link("7", env.manager.wifi, ifname="wlan7", managed=True)
    env.manager.wifi.add_link(later)
    assert env.session.running_link is later


def test_bind_unmanaged_link_does_not_run(env):
    env.link.managed = False
    assert env.session.bind("1") is None
    assert env.session.running_link is None
    assert "not managed" in env.out.getvalue()


def test_peer_connected_starts_sink_timer(env):
    env.session.run_on(env.link)
    peer = add_peer(env)
    peer.update({"Connected": True})
    assert env.session.running_peer is peer
    assert env.session.sink_timer.delays == [1.0]
    assert env.session.sink_timeout_time == 1


def test_peer_on_other_link_ignored(env):
    peer = add_peer(env)
    peer.update({"Connected": True})
    assert env.session.running_peer is None


def test_go_neg_request_connects_and_waits(env):
    env.session.run_on(env.link)
    peer = add_peer(env)
    env.session.peer_go_neg_request(peer, "pbc", "")
    assert ("Connect", ("auto", "")) in env.bus.calls
    assert env.session.pending_peer is peer
    assert env.session.scan_timer.delays == [60.0]


def test_scan_timeout_clears_pending_and_rescans(env):
    env.session.run_on(env.link)
    peer = add_peer(env)
    env.session.peer_go_neg_request(peer, "pbc", "")
    env.link.p2p_scanning = False
    before = len(env.bus.calls)
    env.session.scan_timeout()
    assert env.session.pending_peer is None
    assert env.bus.calls[before:][0][1][1] == "P2PScanning"
    assert not env.session.scan_timer.pending()


def test_sink_timeout_retries_then_gives_up(env):
    env.session.run_on(env.link)
    peer = add_peer(env, remote_address="not-an-address")
    peer.update({"Connected": True})
    env.session.sink_timeout()
    env.session.sink_timeout()
    env.session.sink_timeout()
    assert env.session.sink_timer.delays == [1.0, 2.0, 3.0]
    assert env.session.sink_timeout_time == 4
    assert "cannot connect sink" in env.out.getvalue()


def test_peer_disconnected_leaves_peer(env):
    env.session.run_on(env.link)
    peer = add_peer(env)
    peer.update({"Connected": True})
    peer.update({"Connected": False})
    assert env.session.running_peer is None
    assert not env.session.sink_timer.pending()
    assert "no longer running on peer peer1@1" in env.out.getvalue()


def test_peer_free_of_pending_peer(env):
    env.session.run_on(env.link)
    peer = add_peer(env, friendly_name="tv")
    env.session.peer_go_neg_request(peer, "pbc", "")
    env.manager.wifi.remove_peer(peer)
    assert env.session.pending_peer is None
    assert "no longer waiting for peer tv (peer1@1)" in env.out.getvalue()


def test_link_free_clears_running_link(env):
    env.session.run_on(env.link)
    env.manager.wifi.remove_link(env.link)
    assert env.session.running_link is None
    assert "no longer running on link 1" in env.out.getvalue()


def test_sink_disconnected_states(env):
    env.session.sink_connected()
    assert env.session.is_sink_connected
    env.session.sink_disconnected()
    assert env.session.is_sink_connected is False


def test_resolution_reported(env):
    env.sink.set_format(1, 0, 0)
    assert "SINK set resolution 640x480" in env.out.getvalue()
    assert env.session.process is None


def test_stop_scans(env):
    env.link.have_p2p_scan = True
    env.link.p2p_scanning = True
    env.session.stop_scans()
    assert env.bus.calls[-1] == ("Set", ("org.freedesktop.miracle.wifi.Link",
                                         "P2PScanning", ("b", False)))


def test_kill_player_terminates_process(env):
    proc = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(30)"])
    env.session.process = proc
    env.session.kill_player()
    assert env.session.process is None
    assert proc.wait(timeout=10) == -signal.SIGTERM


def test_timer_fires_once():
    fired = threading.Event()
    timer = Timer(fired.set)
    timer.schedule(0.01)
    assert fired.wait(5)
    assert not timer.pending()


def test_timer_cancel():
    fired = threading.Event()
    timer = Timer(fired.set)
    timer.schedule(0.2)
    assert timer.pending()
    timer.cancel()
    assert not fired.wait(0.4)
    assert not timer.pending()