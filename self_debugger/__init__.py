"""Self-debugger: health engine for a plugin ecosystem."""

__version__ = "1.0.0"
