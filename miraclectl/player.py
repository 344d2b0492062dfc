"""Building and starting the external stream player."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_RTSP_PORT = 7236
DEFAULT_PLAYER = "miracle-gst"
UIBC_PLAYER = "uibc-viewer"
UIBC_DAEMON = "miracle-uibcctl"


@dataclass
class PlayerConfig:
    """Options that shape the player command line.

    ``player`` names an external player; when None the built-in player
    for the current UIBC state is used.
    """

    player: Optional[str] = None
    uibc_enabled: bool = False
    uibc_port: int = 0
    gst_debug: Optional[str] = None
    debug: bool = False
    audio: int = 1
    scale: Optional[str] = None
    rtsp_port: int = DEFAULT_RTSP_PORT


def build_player_argv(config: PlayerConfig, target: Optional[str] = None,
                      hres: int = 0, vres: int = 0) -> list[str]:
    """Return the argument vector for the player process."""
    if config.player is not None:
        player = config.player
    else:
        player = UIBC_PLAYER if config.uibc_enabled else DEFAULT_PLAYER

    argv = [player]
    if config.uibc_enabled:
        if target is None:
            raise ValueError("UIBC needs the address of the source")
        argv += [target, str(config.uibc_port)]
    if config.gst_debug:
        argv += ["-d", config.gst_debug]
    elif config.debug:
        argv += ["-d", "3"]
    if config.audio:
        argv.append("-a")
    if config.scale:
        argv += ["-s", config.scale]
    argv += ["-p", str(config.rtsp_port)]
    if hres and vres:
        argv += ["-r", f"{hres}x{vres}"]
    return argv


def uibc_daemon_argv(port: int) -> list[str]:
    """Return the argument vector for the UIBC control daemon."""
    return [UIBC_DAEMON, "localhost", str(port)]


def launch_player(config: PlayerConfig, target: Optional[str] = None,
                  hres: int = 0, vres: int = 0) -> subprocess.Popen:
    """Start the player with its output sent to our standard error."""
    argv = build_player_argv(config, target, hres, vres)
    logger.debug("player command: %s", " ".join(argv))
    try:
        return subprocess.Popen(argv, stdout=2, restore_signals=True)
    except OSError as exc:
        logger.debug("stream player failed (%d): %s", exc.errno or 0, exc.strerror)
        raise