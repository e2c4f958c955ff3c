"""Back-office query tool, served by the operational-database bridge."""

from typing import Any, Dict

import structlog

from integrations.mcp_client import MCPClient
from tools.base_tool import BaseTool

logger = structlog.get_logger(__name__)


class OpsDbQueryTool(BaseTool):
    """Run a named, parameterised back-office query."""

    name = "ops_db_query"
    description = (
        "Run a named read-only back-office query (for example fulfillment_backlog "
        "or inventory_by_sku) with parameters, and return the rows."
    )
    input_schema = {
        "type": "object",
        "properties": {
            "query_name": {"type": "string", "minLength": 1, "description": "Name of the registered query"},
            "parameters": {"type": "object", "description": "Query parameters"},
        },
        "required": ["query_name"],
        "additionalProperties": False,
    }

    def __init__(self, client: MCPClient):
        self.client = client

    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        return await self.client.call_tool(
            tool_input["query_name"],
            tool_input.get("parameters") or {},
        )


def register_ops_tools(registry, settings=None) -> None:
    if settings is not None:
        client = MCPClient(url=settings.OPS_MCP_URL, enabled=settings.OPS_MCP_ENABLED)
    else:
        client = MCPClient()
    if not client.enabled:
        logger.info("Operational database bridge disabled; ops_db_query not registered")
        return
    registry.register(OpsDbQueryTool(client))
