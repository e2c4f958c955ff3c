"""
Agent Loop: bounded multi-turn tool-use conversation with the model.

Each turn sends the conversation to the Messages API. When the model asks
for tools, every tool_use block of that turn runs concurrently and the
results go back as one user message of tool_result blocks, in request
order. The model is called at most `max_turns` times; past that the loop
gives up with the fallback message.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from core.exceptions import EngineException
from tools.base_tool import ToolResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class AgentSpec:
    """What the loop needs to know about an agent."""

    id: Optional[str]
    name: str
    system_prompt: str = ""
    model: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    tool_names: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, agent) -> "AgentSpec":
        return cls(
            id=agent.id,
            name=agent.name,
            system_prompt=agent.system_prompt or "",
            model=agent.model_name,
            max_tokens=agent.max_tokens,
            temperature=agent.temperature,
            tool_names=tuple(agent.tool_names or ()),
        )


@dataclass
class AgentRunResult:
    """Outcome of one agent conversation."""

    reply: str
    turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    tool_calls: list[dict] = field(default_factory=list)
    stop_reason: Optional[str] = None
    fallback: bool = False
    error: Optional[str] = None
    transient: bool = False

    @property
    def failed(self) -> bool:
        return self.error is not None

    def to_output(self) -> dict:
        return {
            "reply": self.reply,
            "stop_reason": self.stop_reason,
            "fallback": self.fallback,
        }


def _user_content(user_input: Any) -> str:
    if user_input is None:
        return ""
    if isinstance(user_input, str):
        return user_input
    return json.dumps(user_input, default=str)


def _text_of(content: list) -> str:
    return "".join(
        block.get("text", "")
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )


class AgentLoop:
    """Runs an agent against the model API and the tool registry."""

    def __init__(
        self,
        client,
        tool_registry,
        max_turns: int = 5,
        fallback_message: str = "I apologize, but I could not complete your request. Please try again later.",
        default_model: Optional[str] = None,
        default_max_tokens: int = 1024,
        default_temperature: float = 0.7,
    ):
        self.client = client
        self.tool_registry = tool_registry
        self.max_turns = max_turns
        self.fallback_message = fallback_message
        self.default_model = default_model
        self.default_max_tokens = default_max_tokens
        self.default_temperature = default_temperature

    async def run(self, agent: AgentSpec, user_input: Any) -> AgentRunResult:
        """Converse until the model answers, the turn cap is hit, or the API fails."""
        result = AgentRunResult(reply="")
        messages: list[dict] = [{"role": "user", "content": _user_content(user_input)}]
        tools = self.tool_registry.get_tool_definitions(agent.tool_names) if agent.tool_names else None

        request = {
            "model": agent.model or self.default_model,
            "max_tokens": agent.max_tokens or self.default_max_tokens,
            "temperature": agent.temperature if agent.temperature is not None else self.default_temperature,
            "system": agent.system_prompt or None,
            "tools": tools,
        }

        for turn in range(self.max_turns):
            try:
                response = await self.client.create_message(messages=messages, **request)
            except EngineException as e:
                logger.warning("Model call failed", agent=agent.name, turn=turn + 1, error=e.message)
                return self._fallback(result, error=e.message, transient=e.transient)

            result.turns += 1
            usage = response.get("usage") or {}
            result.input_tokens += usage.get("input_tokens", 0)
            result.output_tokens += usage.get("output_tokens", 0)

            content = response.get("content") or []
            stop_reason = response.get("stop_reason")
            result.stop_reason = stop_reason

            tool_uses = [b for b in content if isinstance(b, dict) and b.get("type") == "tool_use"]
            if stop_reason == "tool_use" and tool_uses:
                messages.append({"role": "assistant", "content": content})
                tool_results = await asyncio.gather(
                    *(self._run_tool(agent, block, result) for block in tool_uses)
                )
                messages.append({"role": "user", "content": list(tool_results)})
                continue

            if stop_reason != "end_turn":
                logger.warning(
                    "Unexpected stop reason, treating as final answer",
                    agent=agent.name,
                    stop_reason=stop_reason,
                )
            result.reply = _text_of(content)
            logger.info(
                "Agent finished",
                agent=agent.name,
                turns=result.turns,
                tool_calls=len(result.tool_calls),
                input_tokens=result.input_tokens,
                output_tokens=result.output_tokens,
            )
            return result

        logger.warning("Agent hit the tool turn limit", agent=agent.name, max_turns=self.max_turns)
        result.stop_reason = "max_turns"
        return self._fallback(result)

    async def _run_tool(self, agent: AgentSpec, block: dict, result: AgentRunResult) -> dict:
        name = block.get("name", "")
        tool_input = block.get("input") or {}
        start = time.monotonic()
        if name in agent.tool_names:
            outcome = await self.tool_registry.call(name, tool_input)
        else:
            logger.warning("Agent requested a tool it was not given", agent=agent.name, tool=name)
            outcome = ToolResult(name, False, error=f"Tool '{name}' is not available to this agent")
        logger.info("Tool invoked", tool=name, success=outcome.success)

        result.tool_calls.append({
            "id": block.get("id"),
            "name": name,
            "input": tool_input,
            "success": outcome.success,
            "error": outcome.error,
            "duration_ms": round((time.monotonic() - start) * 1000, 2),
        })

        tool_result = {
            "type": "tool_result",
            "tool_use_id": block.get("id"),
            "content": json.dumps(outcome.to_payload(), default=str),
        }
        if not outcome.success:
            tool_result["is_error"] = True
        return tool_result

    def _fallback(self, result: AgentRunResult, error: Optional[str] = None, transient: bool = False) -> AgentRunResult:
        result.reply = self.fallback_message
        result.fallback = True
        result.error = error
        result.transient = transient
        return result
