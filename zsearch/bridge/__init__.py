"""
zsearch bridge - session-based MCP transport for the Z.AI remote tools.

Call flow:  SessionStore --(miss)--> SessionAcquirer: GET .../sse -> sessionId
            ToolInvoker  --> POST .../message?sessionId=... -> SSE or JSON body
            ResponseDecoder --> first terminal frame --> normalized result
"""

from zsearch.bridge.errors import BridgeError, SessionAcquisitionError, ToolCallError
from zsearch.bridge.schema import EndpointClass, SessionRecord, ToolDef
from zsearch.bridge.endpoints import Endpoints
from zsearch.bridge.acquirer import SessionAcquirer
from zsearch.bridge.session_store import FileSessionBackend, MemorySessionBackend, SessionStore
from zsearch.bridge.invoker import SessionToolInvoker, ToolInvoker
from zsearch.bridge.curl import CurlToolInvoker
from zsearch.bridge.normalize import normalize

__all__ = [
    "BridgeError",
    "SessionAcquisitionError",
    "ToolCallError",
    "EndpointClass",
    "SessionRecord",
    "ToolDef",
    "Endpoints",
    "SessionAcquirer",
    "FileSessionBackend",
    "MemorySessionBackend",
    "SessionStore",
    "SessionToolInvoker",
    "ToolInvoker",
    "CurlToolInvoker",
    "normalize",
]
