"""
Operational-database bridge client (JSON-RPC 2.0 over HTTP).

Requests use the MCP `tools/call` method:

    {"jsonrpc": "2.0", "id": 1, "method": "tools/call",
     "params": {"name": "<query>", "arguments": {...}}}

A response carrying `error` raises ToolError("MCP Error: ..."); otherwise
its `result` is returned.
"""

import itertools
from typing import Any, Dict, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import ToolError

logger = structlog.get_logger(__name__)


class MCPClient:
    """JSON-RPC 2.0 client for the back-office query bridge."""

    def __init__(
        self,
        url: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.url = url or settings.OPS_MCP_URL
        self.enabled = settings.OPS_MCP_ENABLED if enabled is None else enabled
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> Any:
        """Call a named tool on the bridge and return its result."""
        if not self.enabled:
            raise ToolError("Operational database bridge is disabled")

        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }
        logger.debug("Calling MCP tool", tool=name)

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json=request)
        except httpx.TransportError as e:
            raise ToolError(f"MCP bridge unreachable: {e}", transient=True) from e

        if response.status_code >= 400:
            raise ToolError(
                f"MCP bridge HTTP {response.status_code}",
                transient=response.status_code >= 500,
            )

        body = response.json()
        if body.get("error"):
            message = body["error"].get("message", "Unknown MCP error")
            logger.error("MCP returned error", tool=name, error=message)
            raise ToolError(f"MCP Error: {message}")
        if "result" not in body:
            logger.warning("MCP response missing result field", tool=name)
            return {}
        return body["result"]
