"""Scripted stand-ins for the model API used across the test suite."""

import asyncio
import copy
from typing import Any, Optional


def text_response(text: str, input_tokens: int = 10, output_tokens: int = 5) -> dict:
    """A final assistant answer."""
    return {
        "id": "msg_text",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "stop_reason": "end_turn",
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    }


def tool_use_response(*calls: tuple, text: str = "") -> dict:
    """An assistant turn requesting tools. Each call is (id, name, input)."""
    content: list[dict] = []
    if text:
        content.append({"type": "text", "text": text})
    for tool_id, name, tool_input in calls:
        content.append({"type": "tool_use", "id": tool_id, "name": name, "input": tool_input})
    return {
        "id": "msg_tools",
        "type": "message",
        "role": "assistant",
        "content": content,
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 20, "output_tokens": 8},
    }


class FakeModelClient:
    """Replays scripted responses in order.

    An item may be a response dict, an exception instance (raised), or a
    callable taking the request and returning either. When the script runs
    out, `default` is used (a plain "ok" answer if not given).
    """

    def __init__(self, responses: Optional[list] = None, default: Any = None, delay: float = 0.0):
        self.responses = list(responses or [])
        self.default = default
        self.delay = delay
        self.calls: list[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def create_message(self, **request) -> dict:
        self.calls.append(copy.deepcopy(request))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.responses:
            item = self.responses.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            item = text_response("ok")
        if callable(item) and not isinstance(item, dict):
            item = item(request)
        if isinstance(item, BaseException):
            raise item
        return copy.deepcopy(item)
