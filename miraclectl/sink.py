"""State and protocol logic of the local Wifi-Display sink's RTSP session."""

from __future__ import annotations

import errno
import ipaddress
import logging
import os
import re
import socket
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional

from . import wfd

logger = logging.getLogger(__name__)

WFD_VIDEO_FORMATS = "wfd_video_formats"
WFD_AUDIO_CODECS = "wfd_audio_codecs"
WFD_UIBC_CAPABILITY = "wfd_uibc_capability"
WFD_CONTENT_PROTECTION = "wfd_content_protection"
WFD_CLIENT_RTP_PORTS = "wfd_client_rtp_ports"
WFD_PRESENTATION_URL = "wfd_presentation_URL"
WFD_UIBC_SETTING = "wfd_uibc_setting"
WFD_TRIGGER_METHOD = "wfd_trigger_method"

RTSP_CONTROL_PORT = 7236
DEFAULT_RTP_PORT = 7236

DEFAULT_RES_CEA = 0x0001FFFF
DEFAULT_RES_VESA = 0x1FFFFFFF
DEFAULT_RES_HH = 0x00001FFF

DEFAULT_AUDIO_CODECS = "AAC 00000007 00"
DEFAULT_UIBC_CAPABILITY = (
    "input_category_list=GENERIC;"
    "generic_cap_list=Mouse,SingleTouch;"
    "hidc_cap_list=none;"
    "port=none"
)

PUBLIC_METHODS = "org.wfa.wfd1.0, GET_PARAMETER, SET_PARAMETER"
REQUIRE = "org.wfa.wfd1.0"

_SKIPPED_EXTENSIONS = frozenset({WFD_VIDEO_FORMATS, WFD_AUDIO_CODECS, WFD_UIBC_CAPABILITY})
_UIBC_PORT = re.compile(r"port=\s*([+-]?\d+)")


@dataclass
class SinkOptions:
    """Settings that shape what the sink announces and how it connects."""

    rtp_port: int = DEFAULT_RTP_PORT
    uibc_option: bool = False
    resolutions_cea: int = DEFAULT_RES_CEA
    resolutions_vesa: int = DEFAULT_RES_VESA
    resolutions_hh: int = DEFAULT_RES_HH
    protocol_extensions: dict[str, str] = field(default_factory=dict)
    control_port: int = RTSP_CONTROL_PORT


@dataclass(frozen=True)
class TriggerAction:
    """An RTSP request the sink has to send in reaction to the source."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)


class Sink:
    """One sink session towards a Wifi-Display source."""

    def __init__(self, options: Optional[SinkOptions] = None,
                 on_resolution: Optional[Callable[["Sink"], None]] = None):
        self.options = options if options is not None else SinkOptions()
        self.on_resolution = on_resolution
        self.target: Optional[str] = None
        self.session: Optional[str] = None
        self.url: Optional[str] = None
        self.uibc_config: Optional[str] = None
        self.uibc_setting: Optional[str] = None
        self.uibc_enabled = False
        self.uibc_port = 0
        self.hres = 0
        self.vres = 0
        self.connected = False
        self.hup = False
        self._sock: Optional[socket.socket] = None

    # GET_PARAMETER

    def video_formats(self) -> str:
        """Return the wfd_video_formats value this sink announces."""
        ext = self.options.protocol_extensions.get(WFD_VIDEO_FORMATS)
        if ext is not None:
            return ext
        o = self.options
        return (f"00 00 03 10 {o.resolutions_cea:08x} {o.resolutions_vesa:08x} "
                f"{o.resolutions_hh:08x} 00 0000 0000 10 none none")

    def get_parameter_response(self, requested: Iterable[str]) -> list[str]:
        """Return the ``name: value`` lines answering the requested parameters."""
        wanted = set(requested)
        extensions = self.options.protocol_extensions
        answers: list[tuple[str, str]] = [
            (WFD_CONTENT_PROTECTION, "none"),
            (WFD_VIDEO_FORMATS, self.video_formats()),
            (WFD_AUDIO_CODECS, extensions.get(WFD_AUDIO_CODECS, DEFAULT_AUDIO_CODECS)),
            (WFD_CLIENT_RTP_PORTS,
             f"RTP/AVP/UDP;unicast {self.options.rtp_port} 0 mode=play"),
        ]
        answers.extend((key, value) for key, value in extensions.items()
                       if key not in _SKIPPED_EXTENSIONS)
        if self.options.uibc_option:
            answers.append((WFD_UIBC_CAPABILITY,
                            extensions.get(WFD_UIBC_CAPABILITY, DEFAULT_UIBC_CAPABILITY)))
        return [f"{name}: {value}" for name, value in answers if name in wanted]

    # SET_PARAMETER

    def _apply_uibc_capability(self, config: str) -> None:
        if config == self.uibc_config:
            return
        self.uibc_config = config
        if config.lower() == "none":
            self.uibc_enabled = False
            return
        for token in filter(None, config.split(";")):
            match = _UIBC_PORT.match(token)
            if match:
                self.uibc_port = int(match.group(1))
                logger.debug("UIBC port: %d", self.uibc_port)
                if self.options.uibc_option:
                    self.uibc_enabled = True
                break

    @staticmethod
    def _parse_video_formats(value: str) -> Optional[tuple[int, int, int]]:
        fields = value.split()
        if len(fields) < 7:
            return None
        try:
            return int(fields[4], 16), int(fields[5], 16), int(fields[6], 16)
        except ValueError:
            return None

    def apply_set_parameter(self, params: Mapping[str, str]) -> Optional[TriggerAction]:
        """Apply the parameters of a SET_PARAMETER request.

        Returns the request to send when the source triggers a SETUP.
        Raises ValueError when the announced video formats hold no known
        resolution or a SETUP is triggered before a presentation URL is known.
        """
        url = params.get(WFD_PRESENTATION_URL)
        if url is not None and url != self.url:
            self.url = url
            logger.debug("Got URL: %s", url)

        config = params.get(WFD_UIBC_CAPABILITY)
        if config is not None:
            self._apply_uibc_capability(config)

        setting = params.get(WFD_UIBC_SETTING)
        if setting is not None and setting != self.uibc_setting:
            self.uibc_setting = setting
            logger.debug("uibc setting: %s", setting)

        formats = params.get(WFD_VIDEO_FORMATS)
        if formats is not None:
            masks = self._parse_video_formats(formats)
            if masks is not None:
                self.set_format(*masks)

        trigger = params.get(WFD_TRIGGER_METHOD)
        if trigger != "SETUP":
            return None
        if not self.url:
            raise ValueError("No valid wfd_presentation_URL")
        return TriggerAction("SETUP", self.url, {"Transport": self.setup_transport()})

    def set_format(self, cea_res: int, vesa_res: int, hh_res: int) -> tuple[int, int]:
        """Pick the first known resolution from the CEA, VESA or HH masks."""
        for lookup, mask in ((wfd.get_cea_resolution, cea_res),
                             (wfd.get_vesa_resolution, vesa_res),
                             (wfd.get_hh_resolution, hh_res)):
            try:
                hres, vres = lookup(mask)
            except ValueError:
                continue
            if hres and vres:
                self.hres, self.vres = hres, vres
                if self.on_resolution is not None:
                    self.on_resolution(self)
                return hres, vres
            break
        raise ValueError("no supported resolution in video formats")

    # SETUP / PLAY

    def setup_transport(self) -> str:
        return f"RTP/AVP/UDP;unicast;client_port={self.options.rtp_port}"

    def handle_setup_reply(self, session: str) -> TriggerAction:
        """Store the session id from a SETUP reply and return the PLAY request."""
        self.session = session.split(";", 1)[0]
        if not self.url:
            raise ValueError("No valid wfd_presentation_URL")
        return TriggerAction("PLAY", self.url, {"Session": self.session})

    # connection

    def connect(self, target: str) -> None:
        """Start a non-blocking connection to the source at IPv4 ``target``."""
        if not target or self._sock is not None:
            raise ValueError("invalid arguments")
        try:
            ipaddress.IPv4Address(target)
        except ValueError:
            raise ValueError(f"invalid IPv4 address: {target!r}") from None
        self.target = target

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        err = sock.connect_ex((target, self.options.control_port))
        if err not in (0, errno.EINPROGRESS):
            sock.close()
            raise OSError(err, os.strerror(err))
        self._sock = sock

    def _finish_connect(self) -> None:
        """Check the outcome of the pending connection once it is writable."""
        if self._sock is None or self.connected or self.hup:
            return
        err = self._sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
        if err:
            self.hup = True
            raise OSError(err, f"cannot connect to remote host: {os.strerror(err)}")
        logger.debug("connection established")
        self.connected = True

    def close(self) -> None:
        if self._sock is None:
            return
        self._sock.close()
        self._sock = None
        self.connected = False
        self.hup = False

    def is_connecting(self) -> bool:
        return self._sock is not None and not self.connected

    def is_connected(self) -> bool:
        return self.connected

    def is_closed(self) -> bool:
        return self._sock is None