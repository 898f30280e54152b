"""Stdio <-> SSE bridge for stdio-only MCP clients."""

from fileagent.bridge.relay import BridgeConnectionError, StdioSseBridge

__all__ = ["BridgeConnectionError", "StdioSseBridge"]
