"""
Claude AI Client for the Anthropic Messages API.

Features:
- HTTP/2 connection pooling via httpx
- One request per call; errors are classified so the step retry policy
  can decide (429/529/5xx, timeouts and connection errors are transient)
- Token usage tracking with cost estimation
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
import structlog

from app.config import get_settings
from core.exceptions import ModelAPIError

logger = structlog.get_logger(__name__)


TRANSIENT_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504, 529}


# ─── Token Usage Tracker ───────────────────────────────────────

class TokenUsageTracker:
    """Tracks Claude API token usage for analytics and cost management."""

    def __init__(self):
        self.total_input_tokens: int = 0
        self.total_output_tokens: int = 0
        self.total_requests: int = 0
        self.failed_requests: int = 0
        self.history: List[Dict[str, Any]] = []

    def record(
        self,
        input_tokens: int,
        output_tokens: int,
        model: str,
        duration_ms: float,
        success: bool = True,
    ):
        """Record a single API call's usage."""
        self.total_requests += 1
        if success:
            self.total_input_tokens += input_tokens
            self.total_output_tokens += output_tokens
        else:
            self.failed_requests += 1

        self.history.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "model": model,
            "duration_ms": round(duration_ms, 2),
            "success": success,
        })

        # Keep only last 1000 records in memory
        if len(self.history) > 1000:
            self.history = self.history[-1000:]

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "success_rate": (
                (self.total_requests - self.failed_requests) / max(self.total_requests, 1)
            ) * 100,
            "total_input_tokens": self.total_input_tokens,
            "total_output_tokens": self.total_output_tokens,
            "total_tokens": self.total_input_tokens + self.total_output_tokens,
            "estimated_cost_usd": self._estimate_cost(),
        }

    def _estimate_cost(self) -> float:
        """Rough cost estimate based on Claude Sonnet pricing."""
        input_cost = (self.total_input_tokens / 1_000_000) * 3.0
        output_cost = (self.total_output_tokens / 1_000_000) * 15.0
        return round(input_cost + output_cost, 4)


# ─── Main Claude Client ───────────────────────────────────────

class ClaudeClient:
    """
    Claude Messages API client used by the agent loop.

    The engine only needs `create_message`; retries belong to the step
    that owns the call, never to the client.
    """

    API_BASE = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"

    def __init__(self, settings=None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings or get_settings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.usage = TokenUsageTracker()

    @property
    def api_key(self) -> str:
        return self.settings.ANTHROPIC_API_KEY or ""

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    async def connect(self) -> bool:
        """Open the pooled HTTP client. Returns False when no API key is set."""
        if self._client is not None:
            return True
        if not self.is_configured:
            logger.warning("Claude API key not configured. Agent steps will fail.")
            return False

        self._client = httpx.AsyncClient(
            base_url=self.API_BASE,
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": self.API_VERSION,
                "content-type": "application/json",
            },
            timeout=httpx.Timeout(
                connect=10.0,
                read=float(self.settings.CLAUDE_TIMEOUT),
                write=30.0,
                pool=10.0,
            ),
            http2=self._transport is None,
            transport=self._transport,
            limits=httpx.Limits(
                max_connections=20,
                max_keepalive_connections=10,
                keepalive_expiry=300,
            ),
        )
        logger.info("Claude AI client connected", model=self.settings.CLAUDE_MODEL)
        return True

    async def disconnect(self):
        """Gracefully close connections."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Claude AI client disconnected")

    # ─── Core API Request ──────────────────────────────────────────

    async def create_message(
        self,
        *,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        """POST /v1/messages once and return the response body.

        Raises:
            ModelAPIError: on any failure; `transient` tells the caller
                whether another attempt could succeed.
        """
        if not await self.connect():
            raise ModelAPIError("Claude API key not configured", transient=False)

        settings = self.settings
        payload: Dict[str, Any] = {
            "model": model or settings.CLAUDE_MODEL,
            "max_tokens": max_tokens or settings.CLAUDE_MAX_TOKENS,
            "temperature": temperature if temperature is not None else settings.CLAUDE_TEMPERATURE,
            "messages": messages,
        }
        if system:
            payload["system"] = system
        if tools:
            payload["tools"] = tools

        start_time = time.monotonic()
        try:
            response = await self._client.post("/messages", json=payload)
        except httpx.TimeoutException as e:
            self.usage.record(0, 0, payload["model"], (time.monotonic() - start_time) * 1000, success=False)
            logger.warning("Claude request timeout", error=str(e))
            raise ModelAPIError("Claude request timed out", transient=True) from e
        except httpx.TransportError as e:
            self.usage.record(0, 0, payload["model"], (time.monotonic() - start_time) * 1000, success=False)
            logger.warning("Claude connection failed", error=str(e))
            raise ModelAPIError(f"Claude connection failed: {e}", transient=True) from e

        duration_ms = (time.monotonic() - start_time) * 1000

        if response.status_code == 200:
            try:
                data = response.json()
            except ValueError as e:
                self.usage.record(0, 0, payload["model"], duration_ms, success=False)
                logger.warning("Claude returned a non-JSON body", body=response.text[:200])
                raise ModelAPIError("Claude returned an unreadable response", transient=True, status=200) from e
            usage = data.get("usage") or {}
            self.usage.record(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
                model=payload["model"],
                duration_ms=duration_ms,
            )
            return data

        self.usage.record(0, 0, payload["model"], duration_ms, success=False)
        transient = response.status_code in TRANSIENT_STATUS_CODES or response.status_code >= 500
        body = response.text
        if response.status_code == 429:
            logger.warning("Claude rate limited", retry_after=response.headers.get("retry-after"))
        else:
            logger.error("Claude API error", status=response.status_code, body=body[:500])
        raise ModelAPIError(
            f"Claude API error {response.status_code}: {body[:200]}",
            transient=transient,
            status=response.status_code,
        )
