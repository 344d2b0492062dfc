"""Wi-Fi Display link, peer and sink control: model, commands and sink helpers."""

__version__ = "0.1.0"