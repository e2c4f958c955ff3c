"""Commerce tools: product search, product listing and order lookup."""

from typing import Any, Dict

from integrations.commerce_client import CommerceClient
from tools.base_tool import BaseTool


class SearchProductsTool(BaseTool):
    """Search the store catalog by free-text query."""

    name = "search_products"
    description = "Search for products in the store catalog by query. Returns matching products."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {"type": "string", "minLength": 1, "description": "Product search query"},
            "limit": {"type": "integer", "minimum": 1, "maximum": 50, "description": "Maximum results"},
        },
        "required": ["query"],
        "additionalProperties": False,
    }

    def __init__(self, client: CommerceClient):
        self.client = client

    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        return await self.client.search_products(tool_input["query"], tool_input.get("limit", 10))


class GetProductsTool(BaseTool):
    """List catalog products."""

    name = "get_products"
    description = "Retrieve product information from the store catalog."
    input_schema = {
        "type": "object",
        "properties": {
            "limit": {"type": "integer", "minimum": 1, "maximum": 250, "description": "Number of products to retrieve"},
        },
        "additionalProperties": False,
    }

    def __init__(self, client: CommerceClient):
        self.client = client

    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        return await self.client.list_products(tool_input.get("limit", 20))


class LookupOrderTool(BaseTool):
    """Fetch one order by its order number."""

    name = "lookup_order"
    description = "Look up an order by order number, including its status and line items."
    input_schema = {
        "type": "object",
        "properties": {
            "order_number": {"type": "string", "minLength": 1, "description": "Order number, e.g. #1001"},
        },
        "required": ["order_number"],
        "additionalProperties": False,
    }

    def __init__(self, client: CommerceClient):
        self.client = client

    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        return await self.client.get_order(tool_input["order_number"].lstrip("#"))


COMMERCE_TOOLS = (SearchProductsTool, GetProductsTool, LookupOrderTool)


def register_commerce_tools(registry, settings=None) -> None:
    if settings is not None:
        client = CommerceClient(
            base_url=settings.COMMERCE_API_URL,
            token=settings.COMMERCE_API_TOKEN,
            timeout=settings.COMMERCE_TIMEOUT,
        )
    else:
        client = CommerceClient()
    for tool_class in COMMERCE_TOOLS:
        registry.register(tool_class(client))
