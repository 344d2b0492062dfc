"""Wifi-Display resolution tables (CEA, VESA and handheld bitmaps)."""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Resolution:
    """One entry of a WFD resolution/refresh-rate bitmap."""

    index: int
    hres: int
    vres: int
    fps: int

    @property
    def bit(self) -> int:
        """The bit this entry occupies in a resolution mask."""
        return 1 << self.index


def _table(rows: list[tuple[int, int, int, int]]) -> tuple[Resolution, ...]:
    return tuple(Resolution(*row) for row in rows)


RESOLUTIONS_CEA = _table([
    (0, 640, 480, 60),     # p60
    (1, 720, 480, 60),     # p60
    (2, 720, 480, 60),     # i60
    (3, 720, 576, 50),     # p50
    (4, 720, 576, 50),     # i50
    (5, 1280, 720, 30),    # p30
    (6, 1280, 720, 60),    # p60
    (7, 1920, 1080, 30),   # p30
    (8, 1920, 1080, 60),   # p60
    (9, 1920, 1080, 60),   # i60
    (10, 1280, 720, 25),   # p25
    (11, 1280, 720, 50),   # p50
    (12, 1920, 1080, 25),  # p25
    (13, 1920, 1080, 50),  # p50
    (14, 1920, 1080, 50),  # i50
    (15, 1280, 720, 24),   # p24
    (16, 1920, 1080, 24),  # p24
])

RESOLUTIONS_VESA = _table([
    (0, 800, 600, 30),
    (1, 800, 600, 60),
    (2, 1024, 768, 30),
    (3, 1024, 768, 60),
    (4, 1152, 854, 30),
    (5, 1152, 854, 60),
    (6, 1280, 768, 30),
    (7, 1280, 768, 60),
    (8, 1280, 800, 30),
    (9, 1280, 800, 60),
    (10, 1360, 768, 30),
    (11, 1360, 768, 60),
    (12, 1366, 768, 30),
    (13, 1366, 768, 60),
    (14, 1280, 1024, 30),
    (15, 1280, 1024, 60),
    (16, 1440, 1050, 30),
    (17, 1440, 1050, 60),
    (18, 1440, 900, 30),
    (19, 1440, 900, 60),
    (20, 1600, 900, 30),
    (21, 1600, 900, 60),
    (22, 1600, 1200, 30),
    (23, 1600, 1200, 60),
    (24, 1680, 1024, 30),
    (25, 1680, 1024, 60),
    (26, 1680, 1050, 30),
    (27, 1680, 1050, 60),
    (28, 1920, 1200, 30),
])

RESOLUTIONS_HH = _table([
    (0, 800, 480, 30),
    (1, 800, 480, 60),
    (2, 854, 480, 30),
    (3, 854, 480, 60),
    (4, 864, 480, 30),
    (5, 864, 480, 60),
    (6, 640, 360, 30),
    (7, 640, 360, 60),
    (8, 960, 540, 30),
    (9, 960, 540, 60),
    (10, 848, 480, 30),
    (11, 848, 480, 60),
])

_TABLES = (
    ("CEA", RESOLUTIONS_CEA),
    ("VESA", RESOLUTIONS_VESA),
    ("HH", RESOLUTIONS_HH),
)


def _format_entry(res: Resolution) -> str:
    return f"\t{res.index:2d} {res.bit:08x} {res.hres:4d}x{res.vres:4d}@{res.fps}"


def format_resolutions(prefix: str = "") -> str:
    """Return the full listing of all known resolutions, each line prefixed."""
    lines = []
    for name, table in _TABLES:
        lines.append(f"{prefix}{name} resolutions:\n")
        lines.extend(f"{prefix}{_format_entry(res)}\n" for res in table)
    return "".join(lines)


def print_resolutions(prefix: str = "") -> None:
    """Print the listing of all known resolutions to standard output."""
    print(format_resolutions(prefix), end="")


def generate_resolution_mask(index: int) -> int:
    """Return a mask with all bits up to and including ``index`` set."""
    return ((1 << (index + 1)) - 1) & 0xFFFFFFFF


def dump_resolutions(cea_mask: int, vesa_mask: int, hh_mask: int) -> list[str]:
    """Log, at debug level, the resolutions selected by the masks; return the lines."""
    lines: list[str] = []
    for (name, table), mask in zip(_TABLES, (cea_mask, vesa_mask, hh_mask)):
        if not mask:
            continue
        lines.append(f"{name} resolutions:")
        lines.extend(_format_entry(res) for res in table if res.bit & mask)
    for line in lines:
        logger.debug("%s", line)
    return lines


def _lookup(table: tuple[Resolution, ...], mask: int) -> tuple[int, int]:
    if not mask:
        raise ValueError("empty resolution mask")
    for res in table:
        if res.bit & mask:
            return res.hres, res.vres
    raise ValueError(f"no known resolution in mask {mask:#010x}")


def get_cea_resolution(mask: int) -> tuple[int, int]:
    """Return (hres, vres) of the lowest CEA entry set in ``mask``."""
    return _lookup(RESOLUTIONS_CEA, mask)


def get_vesa_resolution(mask: int) -> tuple[int, int]:
    """Return (hres, vres) of the lowest VESA entry set in ``mask``."""
    return _lookup(RESOLUTIONS_VESA, mask)


def get_hh_resolution(mask: int) -> tuple[int, int]:
    """Return (hres, vres) of the lowest handheld entry set in ``mask``."""
    return _lookup(RESOLUTIONS_HH, mask)