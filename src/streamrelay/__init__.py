"""streamrelay: fan one upstream byte stream out to many WebSocket clients."""

__version__ = "0.1.0"
