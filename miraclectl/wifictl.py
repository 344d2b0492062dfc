"""Interactive and one-shot control of the wifi daemon."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from .cli import ArgCompare, Availability, Cli, Command, CommandNotFound, Severity, UsageError, parse_severity
from .completion import (
    Completer,
    link_completions,
    link_peer_completions,
    peer_completions,
    yes_no_completions,
)
from .manager import Bus, BusCallError, WifiManager
from .model import Link, Peer, Wifi, WifiEvents
from .settings import load_config

PACKAGE_STRING = "miraclectl 1.0"
HISTORY_FILENAME = ".miracle-wifi.history"
WFD_SUBELEMENTS = "000600111c4400c8"
VALID_PROVS = ("auto", "pbc", "display", "pin")

_DEFAULT = "\x1b[0m"
_RED = "\x1b[0;91m"
_GREEN = "\x1b[0;92m"
_YELLOW = "\x1b[0;93m"
_BLUE = "\x1b[0;94m"

PROMPT = "\001" + _BLUE + "\002" + "[wifictl] # " + "\001" + _DEFAULT + "\002"

# Set by the embedding application to provide a system bus connection.
_bus_factory: Optional[Callable[[], Bus]] = None


def is_valid_prov(prov: Optional[str]) -> bool:
    """Return whether ``prov`` names a provisioning method."""
    return prov in VALID_PROVS


class _Events(WifiEvents):
    def __init__(self, ctl: "WifiCtl"):
        self.ctl = ctl

    def _say(self, tag: str, color: str, text: str) -> None:
        cli = self.ctl.cli
        if cli.running():
            cli.printf(f"[{color}{tag}{_DEFAULT}] {text}\n")

    def peer_new(self, peer: Peer) -> None:
        self._say("ADD", _GREEN, f"Peer: {peer.label}")

    def peer_free(self, peer: Peer) -> None:
        self._say("REMOVE", _RED, f"Peer: {peer.label}")

    def peer_provision_discovery(self, peer: Peer, prov: str, pin: str) -> None:
        self._say("PROV", _YELLOW, f"Peer: {peer.label} Type: {prov} PIN: {pin}")

    def peer_go_neg_request(self, peer: Peer, prov: str, pin: str) -> None:
        pass

    def peer_formation_failure(self, peer: Peer, reason: str) -> None:
        self._say("FAIL", _YELLOW, f"Peer: {peer.label} Reason: {reason}")

    def peer_connected(self, peer: Peer) -> None:
        self._say("CONNECT", _GREEN, f"Peer: {peer.label}")

    def peer_disconnected(self, peer: Peer) -> None:
        self._say("DISCONNECT", _YELLOW, f"Peer: {peer.label}")

    def link_new(self, link: Link) -> None:
        self._say("ADD", _GREEN, f"Link: {link.label}")

    def link_free(self, link: Link) -> None:
        if link is self.ctl.selected_link:
            self.ctl.cli.printf(f"link {link.label} deselected\n")
            self.ctl.selected_link = None
        self._say("REMOVE", _RED, f"Link: {link.label}")


def _row(a: str, b: str, c: str, d: str) -> str:
    return f"{a:>6} {b:<24} {c:<30} {d:<10}\n"


class WifiCtl:
    """The commands of the wifi control tool."""

    def __init__(self, manager: Optional[WifiManager], out: Optional[TextIO] = None):
        self.manager = manager
        self.selected_link: Optional[Link] = None
        g = self._guard
        M, Y = Availability.MAYBE, Availability.YES
        LESS, EQUAL, MORE = ArgCompare.LESS, ArgCompare.EQUAL, ArgCompare.MORE
        self.commands = (
            Command("list", None, M, LESS, 0, g(self.cmd_list), "List all objects", ()),
            Command("select", "[link]", Y, LESS, 1, g(self.cmd_select),
                    "Select default link", (link_completions,)),
            Command("show", "[link|peer]", M, LESS, 1, g(self.cmd_show),
                    "Show detailed object information", (link_peer_completions,)),
            Command("set-friendly-name", "[link] <name>", M, LESS, 2,
                    g(self.cmd_set_friendly_name), "Set friendly name of an object",
                    (link_completions, yes_no_completions)),
            Command("set-managed", "[link] <yes|no>", M, LESS, 2, g(self.cmd_set_managed),
                    "Manage or unmnage a link", ()),
            Command("p2p-scan", "[link] [stop]", Y, LESS, 2, g(self.cmd_p2p_scan),
                    "Control neighborhood P2P scanning", (link_completions,)),
            Command("connect", "<peer> [provision] [pin]", M, LESS, 3, g(self.cmd_connect),
                    "Connect to peer", (peer_completions,)),
            Command("disconnect", "<peer>", M, EQUAL, 1, g(self.cmd_disconnect),
                    "Disconnect from peer", (peer_completions,)),
            Command("quit", None, Y, MORE, 0, g(self.cmd_quit), "Quit program", ()),
            Command("exit", None, Y, MORE, 0, g(self.cmd_quit), None, ()),
            Command("help", None, M, MORE, 0, None, "Print help", ()),
        )
        self.cli = Cli(self.commands, interactive=False, out=out)
        if manager is not None:
            manager.wifi.events = _Events(self)

    @property
    def _wifi(self) -> Wifi:
        return self.manager.wifi

    def _guard(self, fn: Callable[[list[str]], None]) -> Callable[[list[str]], int]:
        def run(args: list[str]) -> int:
            try:
                fn(args)
            except BusCallError as exc:
                self.cli.error(str(exc))
                return 1
            return 0
        return run

    def cmd_list(self, args: Sequence[str]) -> None:
        out = self.cli.command_printf
        out(_row("LINK", "INTERFACE", "FRIENDLY-NAME", "MANAGED"))
        for link in self._wifi.links:
            out(_row(link.label, link.ifname or "<unknown>",
                     link.friendly_name or "<unknown>", "yes" if link.managed else "no"))
        out("\n")
        out(_row("LINK", "PEER-ID", "FRIENDLY-NAME", "CONNECTED"))
        peers = list(self._wifi.iter_peers())
        for peer in peers:
            out(_row(peer.link.label, peer.label, peer.friendly_name or "<unknown>",
                     "yes" if peer.connected else "no"))
        out(f"\n {len(peers)} peers and {len(self._wifi.links)} links listed.\n")

    def cmd_select(self, args: Sequence[str]) -> None:
        if not args:
            if self.selected_link is not None:
                self.cli.printf(f"link {self.selected_link.label} deselected\n")
                self.selected_link = None
            return
        link = self._wifi.search_link(args[0])
        if link is None:
            self.cli.error(f"unknown link {args[0]}")
            return
        self.selected_link = link
        self.manager.set_wfd_subelements(link, WFD_SUBELEMENTS)
        self.cli.printf(f"link {link.label} selected\n")

    def cmd_show(self, args: Sequence[str]) -> None:
        link: Optional[Link] = None
        peer: Optional[Peer] = None
        wifi = self._wifi
        if args:
            name = args[0]
            link = wifi.find_link(name)
            if link is None:
                peer = wifi.find_peer(name)
            if link is None and peer is None:
                link = wifi.search_link(name)
            if link is None and peer is None:
                peer = wifi.search_peer(name)
            if link is None and peer is None:
                self.cli.error(f"unknown link or peer {name}")
                return
        else:
            link = self.selected_link

        out = self.cli.command_printf
        if link is not None:
            out(f"Link={link.label}\n")
            if link.ifindex > 0:
                out(f"InterfaceIndex={link.ifindex}\n")
            if link.ifname:
                out(f"InterfaceName={link.ifname}\n")
            if link.friendly_name:
                out(f"FriendlyName={link.friendly_name}\n")
            out(f"P2PScanning={int(link.p2p_scanning)}\n")
            if link.wfd_subelements:
                out(f"WfdSubelements={link.wfd_subelements}\n")
            out(f"Managed={int(link.managed)}\n")
        elif peer is not None:
            out(f"Peer={peer.label}\n")
            if peer.p2p_mac:
                out(f"P2PMac={peer.p2p_mac}\n")
            if peer.friendly_name:
                out(f"FriendlyName={peer.friendly_name}\n")
            out(f"Connected={int(peer.connected)}\n")
            if peer.interface:
                out(f"Interface={peer.interface}\n")
            if peer.local_address:
                out(f"LocalAddress={peer.local_address}\n")
            if peer.remote_address:
                out(f"RemoteAddress={peer.remote_address}\n")
            if peer.wfd_subelements:
                out(f"WfdSubelements={peer.wfd_subelements}\n")
        else:
            out("Show what?\n")

    def _link_and_value(self, args: Sequence[str]) -> Optional[tuple[Link, str]]:
        if not args:
            self.cli.command_printf("To what?\n")
            return None
        link: Optional[Link] = None
        if len(args) > 1:
            link = self._wifi.search_link(args[0])
            if link is None:
                self.cli.error(f"unknown link {args[0]}")
                return None
            value = args[1]
        else:
            value = args[0]
        link = link or self.selected_link
        if link is None:
            self.cli.error("no link selected")
            return None
        return link, value

    def cmd_set_friendly_name(self, args: Sequence[str]) -> None:
        found = self._link_and_value(args)
        if found is not None:
            self.manager.set_friendly_name(*found)

    def cmd_set_managed(self, args: Sequence[str]) -> None:
        found = self._link_and_value(args)
        if found is not None:
            link, value = found
            self.manager.set_managed(link, value != "no")

    def cmd_p2p_scan(self, args: Sequence[str]) -> None:
        link: Optional[Link] = None
        stop = False
        for arg in args:
            if arg == "stop":
                stop = True
            else:
                link = self._wifi.search_link(arg)
                if link is None:
                    self.cli.error(f"unknown link {arg}")
                    return
        link = link or self.selected_link
        if link is None:
            self.cli.error("no link selected")
            return
        if not link.managed:
            self.cli.printf(f"link {link.label} not managed\n")
            return
        self.manager.set_p2p_scanning(link, not stop)

    def cmd_connect(self, args: Sequence[str]) -> None:
        if not args:
            self.cli.command_printf("To whom?\n")
            return
        peer = self._wifi.search_peer(args[0])
        if peer is None:
            self.cli.error(f"unknown peer {args[0]}")
            return
        if len(args) > 2:
            prov, pin = args[1], args[2]
        elif len(args) > 1:
            prov, pin = (args[1], "") if is_valid_prov(args[1]) else ("auto", args[1])
        else:
            prov, pin = "auto", ""
        if not peer.link.managed:
            self.cli.printf(f"link {peer.link.label} not managed\n")
            return
        self.manager.connect_peer(peer, prov, pin)

    def cmd_disconnect(self, args: Sequence[str]) -> None:
        if not args:
            self.cli.command_printf("From whom?\n")
            return
        peer = self._wifi.search_peer(args[0])
        if peer is None:
            self.cli.error(f"unknown peer {args[0]}")
            return
        if not peer.link.managed:
            self.cli.printf(f"link {peer.link.label} not managed\n")
            return
        self.manager.disconnect_peer(peer)

    def cmd_quit(self, args: Sequence[str]) -> None:
        self.cli.exit()


def format_help(prog: str) -> str:
    """Return the usage text of the tool."""
    return (
        f"{prog} [OPTIONS...] {{COMMAND}} ...\n\n"
        "Send control command to or query the MiracleCast Wifi-Manager. If no arguments\n"
        "are given, an interactive command-line tool is provided.\n\n"
        "  -h --help                      Show this help\n"
        "     --help-commands             Show available commands\n"
        "     --version                   Show package version\n"
        "     --log-level <lvl>           Maximum level for log messages\n"
        "     --log-time                  Prefix log-messages with timestamp\n"
        "     --log-date-time             Prefix log-messages with date time\n"
        "     --log-journal-level <lvl>   Maximum level for journal log messages\n"
        "\n"
        "Commands:\n"
    )


class _ArgParser(argparse.ArgumentParser):
    def error(self, message: str):
        raise ValueError(message)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse the command line; raises ValueError on bad options.

    ``actions`` holds the terminating options (help, help-commands,
    version) in the order given; ``command`` holds the remaining words.
    """
    parser = _ArgParser(add_help=False)
    parser.add_argument("-h", "--help", dest="actions", action="append_const", const="help")
    parser.add_argument("--help-commands", dest="actions", action="append_const",
                        const="help-commands")
    parser.add_argument("--version", dest="actions", action="append_const", const="version")
    parser.add_argument("--log-level", type=parse_severity)
    parser.add_argument("--log-time", action="store_true")
    parser.add_argument("--log-date-time", action="store_true")
    parser.add_argument("--log-journal-level", dest="journal_level", type=parse_severity)
    parser.add_argument("command", nargs="*")
    opts = parser.parse_intermixed_args(list(argv))
    if opts.actions is None:
        opts.actions = []
    return opts


def _logging_level(severity: Severity) -> int:
    if severity >= Severity.DEBUG:
        return logging.DEBUG
    if severity >= Severity.NOTICE:
        return logging.INFO
    if severity == Severity.WARNING:
        return logging.WARNING
    if severity == Severity.ERROR:
        return logging.ERROR
    return logging.CRITICAL


def _configure(cli: Cli, opts: argparse.Namespace) -> None:
    config = load_config() or {}
    group = config.get("wifictl", {})
    journal = None
    for key in ("log-journal-level", "log-level"):
        if key not in group:
            continue
        try:
            level = parse_severity(group[key])
        except ValueError:
            continue
        if key == "log-level":
            cli.max_severity = level
        else:
            journal = level
    if opts.log_level is not None:
        cli.max_severity = opts.log_level
    if opts.journal_level is not None:
        journal = opts.journal_level
    if journal is not None:
        logging.getLogger("miraclectl").setLevel(_logging_level(journal))
    if opts.log_time:
        cli.log_time_origin = time.monotonic()
    if opts.log_date_time:
        cli.log_date_time = True


def _interactive(ctl: WifiCtl) -> int:
    cli = ctl.cli
    cli.interactive = sys.stdin.isatty()
    cli.prompt = PROMPT
    cli.history_file = Path(HISTORY_FILENAME)
    cli.completer = Completer(ctl.commands, ctl.manager.wifi)
    try:
        ctl.manager.fetch()
    except BusCallError:
        return 1
    cli.run()
    for link in list(ctl.manager.wifi.links):
        if link.have_p2p_scan:
            try:
                ctl.manager.set_p2p_scanning(link, False)
            except BusCallError:
                pass
    return 0


def _single(ctl: WifiCtl, args: list[str]) -> int:
    try:
        ctl.manager.fetch()
    except BusCallError:
        return 1
    try:
        result = ctl.cli.do(args)
    except CommandNotFound:
        ctl.cli.error(f"unknown operation {args[0]}")
        return 1
    except UsageError:
        return 1
    return 1 if result else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the tool; returns the process exit status."""
    prog = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "miracle-wifictl"
    args = list(sys.argv[1:] if argv is None else argv)
    try:
        opts = parse_args(args)
    except ValueError as exc:
        print(f"{prog}: {exc}", file=sys.stderr)
        return 1

    if opts.actions:
        action = opts.actions[0]
        if action == "help":
            print(format_help(prog), end="")
            return 0
        if action == "help-commands":
            return WifiCtl(None).cli.help(20)
        print(PACKAGE_STRING)
        return 0

    bus = _bus_factory() if _bus_factory is not None else None
    if bus is None:
        print("ERROR: cannot connect to system bus: no bus connection available",
              file=sys.stderr)
        return 1

    ctl = WifiCtl(WifiManager(bus))
    _configure(ctl.cli, opts)
    try:
        if opts.command:
            return _single(ctl, opts.command)
        return _interactive(ctl)
    finally:
        ctl.manager.wifi.clear()