"""Control tool that runs a dedicated local Wifi-Display sink."""

from __future__ import annotations

import argparse
import logging
import os
import re
import sys
import time
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence, TextIO

from . import wfd
from .cli import ArgCompare, Availability, Cli, Command, CommandNotFound, Severity, UsageError, parse_severity
from .completion import Completer, link_completions, link_peer_completions, yes_no_completions
from .manager import Bus, BusCallError, WifiManager
from .model import Link, Peer, Wifi
from .player import DEFAULT_RTSP_PORT, PlayerConfig
from .session import SinkSession
from .settings import load_config
from .sink import DEFAULT_RES_CEA, DEFAULT_RES_HH, DEFAULT_RES_VESA, Sink, SinkOptions

PACKAGE_STRING = "miraclectl 1.0"
HISTORY_FILENAME = ".miracle-sink.history"
DEFAULT_AUDIO = 1
EXTENSION_PREFIX = "extends."

_DEFAULT = "\x1b[0m"
_BLUE = "\x1b[0;94m"
PROMPT = "\001" + _BLUE + "\002" + "[sinkctl] # " + "\001" + _DEFAULT + "\002"

# Set by the embedding application to provide a system bus connection.
_bus_factory: Optional[Callable[[], Bus]] = None

_INT = re.compile(r"\s*([+-]?\d+)")
_HEX = re.compile(r"\s*([+-]?)(?:0[xX])?([0-9a-fA-F]+)")


def _atoi(text: str) -> int:
    match = _INT.match(text)
    return int(match.group(1)) if match else 0


def _parse_res(text: str) -> tuple[int, ...]:
    values: list[int] = []
    pos = 0
    for idx in range(3):
        match = _HEX.match(text, pos)
        if not match:
            break
        value = int(match.group(2), 16)
        if match.group(1) == "-":
            value = -value
        values.append(value & 0xFFFFFFFF)
        pos = match.end()
        if idx < 2:
            if text[pos:pos + 1] != ",":
                break
            pos += 1
    return tuple(values)


def _row(a: str, b: str, c: str, d: str) -> str:
    return f"{a:>6} {b:<24} {c:<30} {d:<10}\n"


class SinkCtl:
    """The commands of the sink control tool."""

    def __init__(self, session: Optional[SinkSession], out: Optional[TextIO] = None):
        self.session = session
        self.cli = Cli(self.commands(), interactive=False, out=out)
        if session is not None:
            session.cli = self.cli

    def _guard(self, fn: Callable[[list[str]], None]) -> Callable[[list[str]], int]:
        def run(args: list[str]) -> int:
            try:
                fn(args)
            except BusCallError as exc:
                self.cli.error(str(exc))
                return 1
            return 0
        return run

    def commands(self) -> tuple[Command, ...]:
        g = self._guard
        M, Y = Availability.MAYBE, Availability.YES
        LESS, EQUAL, MORE = ArgCompare.LESS, ArgCompare.EQUAL, ArgCompare.MORE
        return (
            Command("list", None, M, LESS, 0, g(self.cmd_list), "List all objects", ()),
            Command("show", "<link|peer>", M, LESS, 1, g(self.cmd_show),
                    "Show detailed object information", (link_peer_completions,)),
            Command("run", "<link>", M, EQUAL, 1, g(self.cmd_run),
                    "Run sink on given link", (link_completions,)),
            Command("bind", "<link>", M, EQUAL, 1, g(self.cmd_bind),
                    "Like 'run' but bind the link name to run when it is hotplugged",
                    (link_completions,)),
            Command("set-friendly-name", "[link] <name>", M, LESS, 2,
                    g(self.cmd_set_friendly_name), "Set friendly name of an object",
                    (link_completions,)),
            Command("set-managed", "<link> <yes|no>", M, EQUAL, 2, g(self.cmd_set_managed),
                    "Manage or unmnage a link", (link_completions, yes_no_completions)),
            Command("quit", None, Y, MORE, 0, g(self.cmd_quit), "Quit program", ()),
            Command("exit", None, Y, MORE, 0, g(self.cmd_quit), None, ()),
            Command("help", None, M, MORE, 0, None, "Print help", ()),
        )

    @property
    def _manager(self) -> WifiManager:
        return self.session.manager

    @property
    def _wifi(self) -> Wifi:
        return self.session.manager.wifi

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
                self.cli.error(f"unknown {name}")
                return

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

    def _check_not_running(self) -> bool:
        running = self.session.running_link
        if running is not None:
            self.cli.error(f"already running on {running.label}")
            return False
        return True

    def cmd_run(self, args: Sequence[str]) -> None:
        if not self._check_not_running():
            return
        link = self._wifi.search_link(args[0])
        if link is None:
            self.cli.error(f"unknown link {args[0]}")
            return
        if not link.managed:
            self.cli.printf(f"link {link.label} not managed\n")
            return
        self.session.run_on(link)

    def cmd_bind(self, args: Sequence[str]) -> None:
        if not self._check_not_running():
            return
        self.session.bind(args[0])

    def cmd_set_friendly_name(self, args: Sequence[str]) -> None:
        if not args:
            self.cli.command_printf("To what?\n")
            return
        link: Optional[Link] = None
        if len(args) > 1:
            link = self._wifi.search_link(args[0])
            if link is None:
                self.cli.error(f"unknown link {args[0]}")
                return
            name = args[1]
        else:
            name = args[0]
        link = link or self.session.running_link
        if link is None:
            self.cli.error("no running link")
            return
        self._manager.set_friendly_name(link, name)

    def cmd_set_managed(self, args: Sequence[str]) -> None:
        link = self._wifi.search_link(args[0])
        if link is None:
            self.cli.error(f"unknown link {args[0]}")
            return
        self._manager.set_managed(link, args[1] != "no")

    def cmd_quit(self, args: Sequence[str]) -> None:
        self.cli.exit()


def format_help(prog: str) -> str:
    """Return the usage text of the tool."""
    return (
        f"{prog} [OPTIONS...] ...\n\n"
        "Control a dedicated local sink via MiracleCast.\n"
        "  -h --help                      Show this help\n"
        "     --help-commands             Show available commands\n"
        "     --version                   Show package version\n"
        "     --log-level <lvl>           Maximum level for log messages\n"
        "     --log-time                  Prefix log-messages with timestamp\n"
        "     --log-date-time             Prefix log-messages with date time\n"
        "\n"
        "     --log-journal-level <lvl>   Maximum level for journal log messages\n"
        "     --gst-debug [cat:]lvl[,...] List of categories an level of debug\n"
        f"     --audio <0/1>               Enable audio support (default {DEFAULT_AUDIO})\n"
        "     --scale WxH                 Scale to resolution\n"
        f"  -p --port <port>                  Port for rtsp (default {DEFAULT_RTSP_PORT})\n"
        "     --uibc                         Enables UIBC\n"
        "  -e --external-player           Configure player to use\n"
        "     --res <n,n,n>               Supported resolutions masks (CEA, VESA, HH)\n"
        f"                                    default CEA  {DEFAULT_RES_CEA:08X}\n"
        f"                                    default VESA {DEFAULT_RES_VESA:08X}\n"
        f"                                    default HH   {DEFAULT_RES_HH:08X}\n"
        "     --help-res                  Shows available values for res\n"
        "\n"
    )


class _ArgParser(argparse.ArgumentParser):
    def error(self, message: str):
        raise ValueError(message)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse the command line; raises ValueError on bad options.

    ``actions`` holds the terminating options in the order given; ``res``
    holds the masks that could be read from ``--res``; ``command`` holds
    the remaining words.
    """
    parser = _ArgParser(add_help=False)
    for flags, const in ((("-h", "--help"), "help"), (("--help-commands",), "help-commands"),
                         (("--help-res",), "help-res"), (("--version",), "version")):
        parser.add_argument(*flags, dest="actions", action="append_const", const=const)
    parser.add_argument("--log-level", type=parse_severity)
    parser.add_argument("--log-time", action="store_true")
    parser.add_argument("--log-date-time", action="store_true")
    parser.add_argument("--log-journal-level", dest="journal_level", type=parse_severity)
    parser.add_argument("--gst-debug")
    parser.add_argument("--audio", type=_atoi)
    parser.add_argument("--scale")
    parser.add_argument("--res", type=_parse_res)
    parser.add_argument("-p", "--port", type=_atoi)
    parser.add_argument("--uibc", action="store_true")
    parser.add_argument("-e", "--external-player")
    parser.add_argument("command", nargs="*")
    opts = parser.parse_intermixed_args(list(argv))
    if opts.actions is None:
        opts.actions = []
    return opts


def load_extensions(config: Optional[Mapping[str, Mapping[str, str]]]) -> dict[str, str]:
    """Return the ``extends.*`` keys of the sinkctl group, prefix removed."""
    if not config:
        return {}
    group = config.get("sinkctl", {})
    return {key[len(EXTENSION_PREFIX):]: value for key, value in group.items()
            if key.startswith(EXTENSION_PREFIX)}


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


def _configure(cli: Cli, group: Mapping[str, str], opts: argparse.Namespace) -> None:
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


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the tool; returns the process exit status."""
    prog = Path(sys.argv[0]).name if sys.argv and sys.argv[0] else "miracle-sinkctl"
    args = list(sys.argv[1:] if argv is None else argv)

    config = load_config() or {}
    group = config.get("sinkctl", {})
    autocmd = group.get("autocmd")
    if autocmd:
        args += [word for word in autocmd.split(" ") if word]

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
            return SinkCtl(None).cli.help(20)
        if action == "help-res":
            wfd.print_resolutions("")
            return 0
        print(PACKAGE_STRING)
        return 0

    bus = _bus_factory() if _bus_factory is not None else None
    if bus is None:
        print("ERROR: cannot connect to system bus: no bus connection available",
              file=sys.stderr)
        return 1

    if os.geteuid() != 0:
        print("NOTICE: Must run as root", file=sys.stderr)
        return 0

    if opts.port is not None:
        port = opts.port
    elif "rstp-port" in group:
        port = _atoi(group["rstp-port"])
    else:
        port = DEFAULT_RTSP_PORT
    res = [DEFAULT_RES_CEA, DEFAULT_RES_VESA, DEFAULT_RES_HH]
    if opts.res:
        res[:len(opts.res)] = opts.res

    player = PlayerConfig(
        player=opts.external_player or group.get("external-player"),
        gst_debug=opts.gst_debug,
        audio=DEFAULT_AUDIO if opts.audio is None else opts.audio,
        scale=opts.scale,
        rtsp_port=port,
    )
    options = SinkOptions(rtp_port=port, uibc_option=opts.uibc,
                          resolutions_cea=res[0], resolutions_vesa=res[1],
                          resolutions_hh=res[2], protocol_extensions=load_extensions(config))
    manager = WifiManager(bus)
    session = SinkSession(manager, Sink(options), player)
    ctl = SinkCtl(session)
    cli = ctl.cli
    _configure(cli, group, opts)
    cli.interactive = sys.stdin.isatty()
    cli.prompt = PROMPT
    cli.history_file = Path(HISTORY_FILENAME)
    cli.completer = Completer(cli.commands, manager.wifi)

    result = 0
    try:
        manager.fetch()
        if opts.command:
            try:
                cli.do(opts.command)
            except CommandNotFound:
                cli.error(f"unknown operation {opts.command[0]}")
            except UsageError:
                pass
        cli.run()
    except BusCallError:
        result = 1
    finally:
        session.scan_timer.cancel()
        session.sink_timer.cancel()
        session.sink.close()
        session.stop_scans()
        manager.wifi.clear()
    return result