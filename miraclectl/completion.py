"""Tab completion for the interactive shells of the control tools."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from .cli import Command, get_args
from .model import Wifi

YES_NO = ("yes", "no")


def _matching(names: Iterable[Optional[str]], text: str) -> list[str]:
    return [name for name in names if name and name.startswith(text)]


def _link_names(wifi: Optional[Wifi]) -> Iterable[Optional[str]]:
    if wifi is None:
        return
    for link in wifi.links:
        yield link.label
        yield link.friendly_name


def _peer_names(wifi: Optional[Wifi]) -> Iterable[Optional[str]]:
    if wifi is None:
        return
    for peer in wifi.iter_peers():
        yield peer.label
        yield peer.friendly_name


def yes_no_completions(wifi: Optional[Wifi], text: str) -> list[str]:
    """Return "yes" and "no" where they start with ``text``."""
    return _matching(YES_NO, text)


def link_completions(wifi: Optional[Wifi], text: str) -> list[str]:
    """Return link labels and friendly names that start with ``text``."""
    return _matching(_link_names(wifi), text)


def peer_completions(wifi: Optional[Wifi], text: str) -> list[str]:
    """Return peer labels and friendly names that start with ``text``."""
    return _matching(_peer_names(wifi), text)


def link_peer_completions(wifi: Optional[Wifi], text: str) -> list[str]:
    """Return matching link names followed by matching peer names."""
    return link_completions(wifi, text) + peer_completions(wifi, text)


def command_completions(commands: Sequence[Command], text: str) -> list[str]:
    """Return the names of all commands that start with ``text``."""
    return _matching((cmd.name for cmd in commands), text)


class Completer:
    """Chooses completions from the command word and argument position."""

    def __init__(self, commands: Sequence[Command], wifi: Optional[Wifi]):
        self.commands = tuple(commands)
        self.wifi = wifi
        self._cache: list[str] = []

    def matches(self, line: str, text: str, start: int) -> list[str]:
        """Return all completions for ``text`` beginning at ``start`` in ``line``."""
        if start == 0:
            return command_completions(self.commands, text)
        result: list[str] = []
        for cmd in self.commands:
            if not line.startswith(cmd.name):
                continue
            index = get_args(line) - 2
            if 0 <= index < len(cmd.completions):
                fn = cmd.completions[index]
                if fn is not None:
                    result = list(fn(self.wifi, text))
        return result

    def complete(self, line: str, text: str, start: int, state: int) -> Optional[str]:
        """Return the ``state``-th completion, or None once they run out."""
        if state == 0:
            self._cache = self.matches(line, text, start)
        if state < len(self._cache):
            return self._cache[state]
        return None