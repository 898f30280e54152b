"""FileAgent: give an AI agent one folder, and ask before every touch.

The gateway serves a small set of file tools over MCP, confined to a
single sandbox folder and gated on per-call operator approval.  The
bridge relays a stdio MCP client to the gateway's SSE endpoint.
"""

from .version import __version__

__all__ = ["__version__"]
