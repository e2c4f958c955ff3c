"""
Tool Registry: central registry of the tools agents may call.

Maps tool names to implementations, validates input against each tool's
declared JSON Schema before invocation, and produces the tool
declarations sent to the model.
"""

import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import structlog
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from core.exceptions import (
    ConfigurationError,
    EngineException,
    InvalidToolInput,
    ToolError,
    ToolNotFound,
)
from tools.base_tool import BaseTool, FunctionTool, ToolResult

logger = structlog.get_logger(__name__)


class ToolRegistry:
    """Registry of tools keyed by name."""

    def __init__(self):
        self._tools: Dict[str, BaseTool] = {}
        self._validators: Dict[str, Draft202012Validator] = {}

    def register(self, tool: BaseTool) -> None:
        """Register a tool instance. A later registration replaces an earlier one."""
        try:
            Draft202012Validator.check_schema(tool.input_schema)
        except SchemaError as e:
            raise ConfigurationError(f"Tool '{tool.name}' has an invalid input schema: {e.message}")
        self._tools[tool.name] = tool
        self._validators[tool.name] = Draft202012Validator(tool.input_schema)
        logger.info("Tool registered", tool=tool.name)

    def register_function(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        handler: Callable,
    ) -> None:
        """Register an async callable as a tool."""
        self.register(FunctionTool(name, description, input_schema, handler))

    def get(self, name: str) -> BaseTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return tool

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> List[str]:
        return list(self._tools.keys())

    def get_tool_definitions(self, names: Optional[Iterable[str]] = None) -> List[Dict[str, Any]]:
        """Tool declarations in Anthropic API format.

        Args:
            names: Restrict to these tools (all when None). Unknown names raise ToolNotFound.
        """
        if names is None:
            return [tool.definition() for tool in self._tools.values()]
        return [self.get(name).definition() for name in names]

    def validate_input(self, name: str, tool_input: Any) -> None:
        validator = self._validators.get(name)
        if validator is None:
            raise ToolNotFound(name)
        errors = sorted(validator.iter_errors(tool_input), key=lambda e: list(e.path))
        if errors:
            raise InvalidToolInput(
                name,
                [f"{'/'.join(str(p) for p in e.path) or '<root>'}: {e.message}" for e in errors],
            )

    async def invoke(self, name: str, tool_input: Any) -> Any:
        """Validate and run a tool.

        Raises:
            ToolNotFound: no tool with this name
            InvalidToolInput: input does not match the tool's schema
            ToolError: the tool failed
        """
        tool = self.get(name)
        self.validate_input(name, tool_input)
        try:
            return await tool.run(tool_input)
        except EngineException:
            raise
        except Exception as e:
            raise ToolError(f"Tool '{name}' failed: {e}") from e

    async def call(self, name: str, tool_input: Any) -> ToolResult:
        """Run a tool and capture any failure in the result instead of raising."""
        start = time.monotonic()
        try:
            output = await self.invoke(name, tool_input)
        except EngineException as e:
            return ToolResult(
                tool_name=name,
                success=False,
                error=e.message,
                duration_ms=(time.monotonic() - start) * 1000,
            )
        return ToolResult(
            tool_name=name,
            success=True,
            output=output,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    def list_all(self) -> List[Dict[str, Any]]:
        """All declarations, for the API."""
        return self.get_tool_definitions()


# Singleton
_registry: Optional[ToolRegistry] = None


def build_default_registry(settings=None) -> ToolRegistry:
    """Registry with the built-in commerce and back-office tools."""
    from tools.implementations.commerce_tools import register_commerce_tools
    from tools.implementations.ops_tools import register_ops_tools

    registry = ToolRegistry()
    register_commerce_tools(registry, settings)
    register_ops_tools(registry, settings)
    return registry


def get_tool_registry() -> ToolRegistry:
    """Get or create the singleton tool registry."""
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry
