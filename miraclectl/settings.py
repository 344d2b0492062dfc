"""Configuration file loading and small helpers shared by the tools."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

ACCESS_DENIED = "org.freedesktop.DBus.Error.AccessDenied"

_ESCAPES = {"s": " ", "n": "\n", "t": "\t", "r": "\r", "\\": "\\"}


class _KeyFileError(ValueError):
    pass


def _unescape(value: str) -> str:
    out = []
    chars = iter(value)
    for ch in chars:
        if ch != "\\":
            out.append(ch)
            continue
        nxt = next(chars, None)
        if nxt is None or nxt not in _ESCAPES:
            raise _KeyFileError(f"invalid escape in value {value!r}")
        out.append(_ESCAPES[nxt])
    return "".join(out)


def _parse_keyfile(text: str) -> dict[str, dict[str, str]]:
    groups: dict[str, dict[str, str]] = {}
    current: Optional[dict[str, str]] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("[") and line.endswith("]"):
            current = groups.setdefault(line[1:-1], {})
            continue
        if current is None or "=" not in line:
            raise _KeyFileError(f"invalid line {raw!r}")
        key, _, value = line.partition("=")
        key = key.strip()
        if not key:
            raise _KeyFileError(f"missing key in line {raw!r}")
        current[key] = _unescape(value.strip())
    return groups


def load_config(home: Optional[os.PathLike | str] = None) -> Optional[dict[str, dict[str, str]]]:
    """Load ``~/.config/miraclecastrc``, falling back to ``~/.miraclecast``.

    Returns a mapping of group name to key/value mapping, or None when
    neither file can be read and parsed.
    """
    base = Path(home) if home is not None else Path.home()
    for candidate in (base / ".config" / "miraclecastrc", base / ".miraclecast"):
        try:
            return _parse_keyfile(candidate.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, _KeyFileError):
            continue
    return None


_HEX_BYTE = re.compile(r"\s*([0-9a-fA-F]{1,2})")


def reformat_mac(src: str) -> str:
    """Normalise a colon-separated MAC address to lower-case two-digit form.

    Octets that cannot be parsed are left as zero.
    """
    octets = [0] * 6
    pos = 0
    for idx in range(6):
        match = _HEX_BYTE.match(src, pos)
        if not match:
            break
        octets[idx] = int(match.group(1), 16)
        pos = match.end()
        if idx < 5:
            if src[pos:pos + 1] != ":":
                break
            pos += 1
    return ":".join(f"{octet:02x}" for octet in octets)


def bus_error_message(name: Optional[str], message: Optional[str], error: int) -> str:
    """Return a human-readable text for a failed bus call."""
    if name == ACCESS_DENIED:
        return "Access denied"
    if message:
        return message
    return os.strerror(abs(error))