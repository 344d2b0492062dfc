"""Command-line front end shared by the control tools."""

from __future__ import annotations

import enum
import shlex
import signal
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Sequence, TextIO


class Availability(enum.Enum):
    """Whether a command is offered in the interactive shell."""

    NO = "no"
    MAYBE = "maybe"
    YES = "yes"


class ArgCompare(enum.Enum):
    """How the argument count of a command is checked."""

    MORE = "more"
    LESS = "less"
    EQUAL = "equal"


class Severity(enum.IntEnum):
    FATAL = 0
    ALERT = 1
    CRITICAL = 2
    ERROR = 3
    WARNING = 4
    NOTICE = 5
    INFO = 6
    DEBUG = 7
    TRACE = 8


_SEVERITY_ALIASES = {
    "crit": Severity.CRITICAL,
    "err": Severity.ERROR,
    "warn": Severity.WARNING,
}


def parse_severity(text: str) -> Severity:
    """Parse a log level given as a number or a name."""
    value = text.strip().lower()
    if value.isdigit():
        try:
            return Severity(int(value))
        except ValueError:
            raise ValueError(f"invalid log level: {text!r}") from None
    if value in _SEVERITY_ALIASES:
        return _SEVERITY_ALIASES[value]
    try:
        return Severity[value.upper()]
    except KeyError:
        raise ValueError(f"invalid log level: {text!r}") from None


@dataclass(frozen=True)
class Command:
    name: str
    args: Optional[str]
    availability: Availability
    arg_compare: ArgCompare
    argc: int
    fn: Optional[Callable[[list[str]], Any]]
    desc: Optional[str]
    completions: tuple = ()


class UsageError(Exception):
    """A command was called with the wrong arguments."""


class CommandNotFound(LookupError):
    """No command of that name is available."""


class _SignalExit(BaseException):
    pass


def get_args(line: str) -> int:
    """Count words on a partial input line the way completion expects."""
    count = 0
    last_delim = 0
    for pos, ch in enumerate(line):
        if ch == " ":
            if last_delim + 1 < pos:
                count += 1
            last_delim = pos
    return count + 1


class Cli:
    """Dispatches commands, prints messages and runs the input loop."""

    def __init__(self, commands: Sequence[Command], interactive: bool = False,
                 out: Optional[TextIO] = None):
        self.commands = tuple(commands)
        self.interactive = interactive
        self.out = out if out is not None else sys.stdout
        self.max_severity = Severity.NOTICE
        self.log_date_time = False
        self.log_time_origin: Optional[float] = None
        self.prompt = ""
        self.history: list[str] = []
        self.history_file: Optional[Path] = None
        self.completer = None
        self._stop = threading.Event()
        self._readline = None

    # output

    def _write(self, text: str) -> None:
        self.out.write(text)
        self.out.flush()

    def printf(self, text: str) -> None:
        self._write(self.time_prefix() + text)

    def command_printf(self, text: str) -> None:
        self._write(text)

    def time_prefix(self) -> str:
        """Return the timestamp prefix for log lines, or an empty string."""
        if self.log_date_time:
            now = datetime.now()
            millis = round(now.microsecond / 1000)
            if millis >= 1000:
                millis -= 1000
            return f"[{now:%x - %X}.{millis:03d}] "
        if self.log_time_origin is not None:
            elapsed = int((time.monotonic() - self.log_time_origin) * 1_000_000)
            sec, usec = divmod(elapsed, 1_000_000)
            return f"[{sec:04d}.{usec:06d}] "
        return ""

    def _log(self, severity: Severity, label: str, message: str) -> None:
        if severity <= self.max_severity:
            self.printf(f"{label}: {message}\n")

    def error(self, message: str) -> None:
        self._log(Severity.ERROR, "ERROR", message)

    def warning(self, message: str) -> None:
        self._log(Severity.WARNING, "WARNING", message)

    def notice(self, message: str) -> None:
        self._log(Severity.NOTICE, "NOTICE", message)

    def debug(self, message: str) -> None:
        self._log(Severity.DEBUG, "DEBUG", message)

    # dispatch

    def _available(self, cmd: Command) -> bool:
        if self.interactive and cmd.availability is Availability.NO:
            return False
        if not self.interactive and cmd.availability is Availability.YES:
            return False
        return True

    def help(self, whitespace: int = 40) -> int:
        self.command_printf("Available commands:\n")
        for cmd in self.commands:
            if not cmd.desc or not self._available(cmd):
                continue
            width = abs(whitespace - len(cmd.name))
            self.command_printf(f"  {cmd.name} {cmd.args or '':<{width}} {cmd.desc}\n")
        return 0

    def _check_argc(self, cmd: Command, count: int) -> None:
        message = None
        if cmd.arg_compare is ArgCompare.EQUAL and count != cmd.argc:
            message = "Invalid number of arguments"
        elif cmd.arg_compare is ArgCompare.MORE and count < cmd.argc:
            message = "too few arguments"
        elif cmd.arg_compare is ArgCompare.LESS and count > cmd.argc:
            message = "too many arguments"
        if message:
            self.command_printf(message + "\n")
            raise UsageError(message)

    def do(self, args: Sequence[str]) -> Any:
        """Run the command named by ``args[0]`` with the remaining arguments."""
        if not args:
            raise CommandNotFound("")
        name, *rest = args
        for cmd in self.commands:
            if cmd.name != name or not self._available(cmd):
                continue
            self._check_argc(cmd, len(rest))
            if cmd.fn is not None:
                try:
                    return cmd.fn(rest)
                except CommandNotFound as exc:
                    raise UsageError(str(exc)) from exc
            break
        if name == "help":
            return self.help(40)
        raise CommandNotFound(name)

    def _remember(self, line: str) -> None:
        self.history.append(line)
        if self._readline is not None:
            self._readline.add_history(line)
        if self.history_file is not None:
            try:
                Path(self.history_file).write_text(
                    "".join(entry + "\n" for entry in self.history), encoding="utf-8")
            except OSError:
                pass

    def handle_line(self, line: Optional[str]) -> None:
        """Process one input line; None means end of input."""
        if line is None:
            if self.interactive:
                self.command_printf("quit\n")
            self.exit()
            return
        try:
            args = shlex.split(line)
        except ValueError as exc:
            self.error(f"cannot parse input: {exc}")
            return
        if not args:
            return
        if line not in ("quit", "exit"):
            self._remember(line)
        try:
            self.do(args)
        except CommandNotFound:
            self.command_printf("Command not found\n")
        except UsageError:
            pass

    # main loop

    def _on_signal(self, signum, frame) -> None:
        self.notice(f"caught signal {signum}, exiting..")
        self.exit()
        raise _SignalExit()

    def _install_signals(self) -> dict:
        previous = {}
        for name in ("SIGTERM", "SIGQUIT", "SIGHUP"):
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            try:
                previous[signum] = signal.signal(signum, self._on_signal)
            except ValueError:
                break
        return previous

    def _setup_readline(self) -> None:
        try:
            import readline
        except ImportError:
            return
        self._readline = readline
        readline.set_auto_history(False)
        if self.history_file is not None:
            try:
                entries = Path(self.history_file).read_text(encoding="utf-8").splitlines()
            except OSError:
                entries = []
            for entry in entries:
                self.history.append(entry)
                readline.add_history(entry)
        completer = self.completer
        if completer is not None:
            readline.set_completer(
                lambda text, state: completer.complete(
                    readline.get_line_buffer(), text, readline.get_begidx(), state))
            readline.parse_and_bind("tab: complete")

    def _read_loop(self) -> None:
        self._setup_readline()
        while not self._stop.is_set():
            try:
                try:
                    line = input(self.prompt)
                except EOFError:
                    self.handle_line(None)
                    break
                self.handle_line(line)
            except KeyboardInterrupt:
                self.command_printf("\n")
            except _SignalExit:
                break

    def _wait(self) -> None:
        while not self._stop.is_set():
            try:
                self._stop.wait(1.0)
            except KeyboardInterrupt:
                continue
            except _SignalExit:
                break

    def run(self, lines: Optional[Iterable[str]] = None) -> int:
        """Run until exit is requested.

        With ``lines`` given they are processed in order; otherwise input is
        read from the terminal when interactive, or the loop waits for exit.
        """
        if lines is not None:
            for line in lines:
                if self._stop.is_set():
                    break
                self.handle_line(line)
            return 0
        previous = self._install_signals()
        try:
            if self.interactive:
                self._read_loop()
            else:
                self._wait()
        finally:
            for signum, handler in previous.items():
                signal.signal(signum, handler)
        return 0

    def exit(self) -> None:
        self._stop.set()

    def running(self) -> bool:
        return self.interactive