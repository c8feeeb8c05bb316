"""Bridge process: the child-side stdio server and the host-side supervisor."""

from ai_bridge.bridge.server import BridgeServer, run_stdio_server, serve_stdio
from ai_bridge.bridge.supervisor import BridgeState, BridgeSupervisor

__all__ = [
    "BridgeServer",
    "BridgeState",
    "BridgeSupervisor",
    "run_stdio_server",
    "serve_stdio",
]
