"""PathTraceRoute: traceroute measurements rendered as path-traced scenes."""

__version__ = "0.1.0"
