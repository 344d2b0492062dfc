[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "miraclectl"
version = "0.1.0"
description = "Controllers and protocol helpers for Wi-Fi Display (Miracast) links, peers and sinks"
requires-python = ">=3.10"
keywords = ["miracast", "wifi-display", "wfd", "p2p", "rtsp", "sink"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Multimedia :: Video :: Display",
]
dependencies = []

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
miracle-wifictl = "miraclectl.wifictl:main"
miracle-sinkctl = "miraclectl.sinkctl:main"

[tool.hatch.build.targets.wheel]
packages = ["miraclectl"]

[tool.pytest.ini_options]
addopts = "-ra"
