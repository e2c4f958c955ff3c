"""
Commerce data provider client.

Thin async wrapper over the store's REST API: product search, product
listing and order lookup. Server errors and network failures are
reported as transient ToolErrors so a retrying step can try again.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import ToolError

logger = structlog.get_logger(__name__)


class CommerceClient:
    """Async client for the commerce data provider."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.COMMERCE_API_URL).rstrip("/")
        self.token = token if token is not None else settings.COMMERCE_API_TOKEN
        self.timeout = timeout or settings.COMMERCE_TIMEOUT
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers(),
            ) as client:
                response = await client.get(url, params=params)
        except httpx.TransportError as e:
            logger.warning("Commerce API unreachable", url=url, error=str(e))
            raise ToolError(f"Commerce API unreachable: {e}", transient=True) from e

        if response.status_code == 404:
            raise ToolError(f"Not found: {path}")
        if response.status_code >= 400:
            logger.warning("Commerce API error", url=url, status=response.status_code)
            raise ToolError(
                f"Commerce API error {response.status_code}: {response.text[:200]}",
                transient=response.status_code == 429 or response.status_code >= 500,
            )
        return response.json()

    async def search_products(self, query: str, limit: int = 10) -> Any:
        return await self._get("/products/search", {"q": query, "limit": limit})

    async def list_products(self, limit: int = 20) -> Any:
        return await self._get("/products", {"limit": limit})

    async def get_order(self, order_number: str) -> Any:
        return await self._get(f"/orders/{order_number}")
