"""
zsearch - Z.AI tools from the terminal and over MCP.

Capabilities:
- Web search and web page reading
- GitHub repository exploration (zread)
- Image and video analysis (vision MCP server over stdio)
- Chat completions, also exposed as a stdio MCP server

Architecture:
- Remote tools are reached through a session-based MCP bridge
  (SSE handshake, then JSON-RPC posts) with a curl fallback transport
- Session ids and tool listings are cached on disk
- Every command reads config, does one round of work, and exits
"""

__version__ = "0.1.0"

from zsearch.validation.config import Config, ConfigError
from zsearch.bridge.factory import InvokerFactory

__all__ = [
    "Config",
    "ConfigError",
    "InvokerFactory",
    "__version__",
]
