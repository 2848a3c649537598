"""MongoDB Lens.

MCP server exposing MongoDB databases as resources, tools and prompts over
line-delimited JSON-RPC on stdio, with an optional HTTP bridge.
"""

__version__ = "0.1.0"
