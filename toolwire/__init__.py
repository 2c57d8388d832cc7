"""toolwire - JSON-RPC tool server over newline-delimited TCP.

Exposes registered tools to socket clients and keeps serving through
malformed input, handler failures, and disconnects.
"""

__version__ = "1.0.0"

__all__ = ["__version__"]
