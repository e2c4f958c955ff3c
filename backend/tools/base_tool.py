"""
Base tool interface for everything an agent can call.

Every tool declares a name, a description for the model, and a JSON
Schema for its input. Handlers return plain JSON-serializable data and
never touch engine state.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class ToolResult:
    """Outcome of one tool call, as handed back to the model."""

    def __init__(
        self,
        tool_name: str,
        success: bool,
        output: Any = None,
        error: Optional[str] = None,
        duration_ms: float = 0,
    ):
        self.tool_name = tool_name
        self.success = success
        self.output = output
        self.error = error
        self.duration_ms = duration_ms
        self.timestamp = datetime.now(timezone.utc)

    def to_payload(self) -> Dict[str, Any]:
        """The tool contract: {"ok": output} or {"error": message}."""
        if self.success:
            return {"ok": self.output}
        return {"error": self.error}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.tool_name,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "duration_ms": round(self.duration_ms, 2),
            "timestamp": self.timestamp.isoformat(),
        }


class BaseTool(ABC):
    """
    Abstract base class for agent tools.

    Subclasses must implement:
    - execute(tool_input) -> Any
    - name / description / input_schema (class attributes)
    """

    name: str = "base"
    description: str = "Abstract base tool"
    input_schema: Dict[str, Any] = {"type": "object", "properties": {}}

    @abstractmethod
    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        """
        Run the tool.

        Args:
            tool_input: Arguments already validated against input_schema

        Returns:
            JSON-serializable output

        Raises:
            ToolError: when the tool cannot produce a result
        """

    async def run(self, tool_input: Dict[str, Any]) -> Any:
        """Execute with timing and logging. Errors propagate to the registry."""
        start = time.monotonic()
        logger.info("Tool starting", tool=self.name)
        try:
            output = await self.execute(tool_input)
        except Exception as e:
            logger.warning(
                "Tool failed",
                tool=self.name,
                error=str(e),
                duration_ms=round((time.monotonic() - start) * 1000, 2),
            )
            raise
        logger.info(
            "Tool completed",
            tool=self.name,
            duration_ms=round((time.monotonic() - start) * 1000, 2),
        )
        return output

    def definition(self) -> Dict[str, Any]:
        """Tool declaration in Anthropic API format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


class FunctionTool(BaseTool):
    """Adapts a plain async callable to the BaseTool interface."""

    def __init__(self, name: str, description: str, input_schema: Dict[str, Any], handler):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self._handler = handler

    async def execute(self, tool_input: Dict[str, Any]) -> Any:
        return await self._handler(tool_input)
