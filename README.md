# miraclectl

Building blocks and two command-line controllers for Wi-Fi Display (Miracast)
on Linux. The package keeps a model of the local Wi-Fi links and the remote
P2P peers reported by a Wi-Fi P2P manager service, runs the commands to
manage them, follows the state of a local sink, builds the sink's WFD
parameter answers and starts an external stream player.

It has no dependencies outside the standard library.

## Installation

```
pip install .
```

For the tests:

```
pip install .[test]
pytest
```

## What the package does not do

- **No message-bus client.** The package does not open a connection to the
  system bus. `miraclectl.manager.WifiManager` works with any object that
  has `call_method(destination, path, interface, member, *args)` (the
  `Bus` protocol) and raises `BusCallError` on failure. Signals are not
  subscribed to: the caller feeds them in through
  `on_interfaces_added`, `on_interfaces_removed`, `on_properties_changed`
  and `on_peer_signal`. The two commands take their connection from the
  module attribute `_bus_factory` in `miraclectl.wifictl` and
  `miraclectl.sinkctl`; it is unset by default, so unless an embedding
  application sets it they print
  `ERROR: cannot connect to system bus: ...` and exit with status 1.
- **No RTSP message exchange.** `miraclectl.sink.Sink` opens a non-blocking
  TCP connection to the source (port 7236) and computes what to answer and
  what to send next, but it does not read or write RTSP messages on that
  connection. Driving the session is left to the caller.

## Commands

Both commands accept `-h`/`--help`, `--help-commands`, `--version`,
`--log-level <lvl>`, `--log-time`, `--log-date-time` and
`--log-journal-level <lvl>`. Levels are numbers 0–8 or names such as
`error`, `warning`, `notice`, `info`, `debug`. `--log-journal-level` sets
the level of the `miraclectl` Python logger. The help options and
`--version` work without a bus connection.

```
miracle-wifictl --help
miracle-wifictl --help-commands
miracle-sinkctl --help-res
```

### miracle-wifictl

With command words it fetches the objects, runs that one command and exits;
without them it reads commands from the terminal (with readline history in
`.miracle-wifi.history` in the current directory and tab completion).

Commands: `list`, `select [link]`, `show [link|peer]`,
`set-friendly-name [link] <name>`, `set-managed [link] <yes|no>`,
`p2p-scan [link] [stop]`, `connect <peer> [provision] [pin]`,
`disconnect <peer>`, `help`, `quit`/`exit`. `select` and `p2p-scan` are
offered only in the interactive shell. Provision types are `auto`, `pbc`,
`display` and `pin`; a second `connect` argument that is not one of these
is taken as the PIN.

### miracle-sinkctl

Runs a sink on one link: it scans for peers, accepts the first incoming
group-owner negotiation, and once the peer is connected tries to connect
the sink to the peer's remote address. When a resolution is set on a
connected sink it starts the player (`miracle-gst`, or `uibc-viewer` when
UIBC is enabled, or the external player). It must run as root; otherwise it
prints `NOTICE: Must run as root` and exits.

Extra options:

- `--gst-debug <spec>`: passed to the player as `-d <spec>`
- `--audio <0/1>`: audio on or off (default 1)
- `--scale WxH`: passed to the player as `-s WxH`
- `-p`, `--port <port>`: RTP port (default 7236)
- `--uibc`: allow the user input back channel
- `-e`, `--external-player <cmd>`: player program to start
- `--res <cea,vesa,hh>`: supported resolution masks in hexadecimal
  (defaults `0001FFFF`, `1FFFFFFF`, `00001FFF`)
- `--help-res`: list the known CEA, VESA and HH resolutions

Commands: `list`, `show <link|peer>`, `run <link>`,
`bind <link>` (like `run`, but also starts when the link appears later),
`set-friendly-name [link] <name>`, `set-managed <link> <yes|no>`, `help`,
`quit`/`exit`. History goes to `.miracle-sink.history` in the current
directory.

## Configuration

Both commands read `~/.config/miraclecastrc`, or `~/.miraclecast` if the
first cannot be read. It is a key file with `[wifictl]` and `[sinkctl]`
groups (`miraclectl.settings.load_config`).

- `[wifictl]`: `log-level`, `log-journal-level`
- `[sinkctl]`: `log-level`, `log-journal-level`, `external-player`,
  `rstp-port`, `autocmd` (words appended to the command line), and
  `extends.<name>` keys, which become extra `<name>: <value>` answers to
  `GET_PARAMETER` requests (`miraclectl.sinkctl.load_extensions`).

```
[sinkctl]
autocmd = run wlan0
extends.wfd_audio_codecs = AAC 00000001 00
```

## Library use

Resolution tables (`miraclectl.wfd`):

```python
from miraclectl.wfd import get_cea_resolution, format_resolutions

print(get_cea_resolution(0x20))   # (1280, 720)
print(format_resolutions(""))
```

Sink parameter answers (`miraclectl.sink`):

```python
from miraclectl.sink import Sink

sink = Sink()
print(sink.get_parameter_response(["wfd_video_formats", "wfd_audio_codecs"]))
# ['wfd_video_formats: 00 00 03 10 0001ffff 1fffffff 00001fff 00 0000 0000 10 none none',
#  'wfd_audio_codecs: AAC 00000007 00']
action = sink.apply_set_parameter({
    "wfd_presentation_URL": "rtsp://192.0.2.1/wfd1.0/streamid=0",
    "wfd_trigger_method": "SETUP",
})
print(action.method, action.headers)   # SETUP {'Transport': 'RTP/AVP/UDP;unicast;client_port=7236'}
```

Player command line (`miraclectl.player`):

```python
from miraclectl.player import PlayerConfig, build_player_argv

print(build_player_argv(PlayerConfig()))   # ['miracle-gst', '-a', '-p', '7236']
```

Other modules: `miraclectl.model` (`Wifi`, `Link`, `Peer`, `WifiEvents`,
with lookup by label, interface, friendly name or index),
`miraclectl.manager` (`WifiManager`, `path_encode`, `path_decode`),
`miraclectl.session` (`SinkSession`, `Timer`), `miraclectl.cli`
(`Cli`, `Command`) and `miraclectl.completion` (`Completer`).