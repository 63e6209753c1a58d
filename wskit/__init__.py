"""Building blocks for HTTP and WebSocket servers: compression streams, frame
handling, connection events, a per-thread event loop and small helpers."""

__version__ = "0.1.0"

__all__ = [
    "bloomfilter",
    "chunking",
    "compression",
    "filereader",
    "httpcontext",
    "loop",
    "optparse",
    "utilities",
    "websocket",
]