"""Agent service: CRUD for agents with tool-name validation."""

import logging
from typing import Any, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ValidationError
from db.models.agent import Agent
from services.base import BaseService
from tools.registry import ToolRegistry, get_tool_registry

logger = logging.getLogger(__name__)


class AgentService(BaseService[Agent]):
    """Service for agent management.

    An agent may only reference tools that exist in the registry; unknown
    names would otherwise surface as errors in the middle of a run.
    """

    def __init__(self, db: AsyncSession, tool_registry: Optional[ToolRegistry] = None):
        super().__init__(Agent, db)
        self.tool_registry = tool_registry or get_tool_registry()

    def _check_tools(self, tool_names: Optional[Iterable[str]]) -> list[str]:
        names = list(tool_names or [])
        unknown = [n for n in names if not self.tool_registry.has(n)]
        if unknown:
            raise ValidationError(f"Unknown tool(s): {', '.join(unknown)}")
        if len(set(names)) != len(names):
            raise ValidationError("tool_names contains duplicates")
        return names

    async def create_agent(self, data: dict[str, Any]) -> Agent:
        data = dict(data)
        data["tool_names"] = self._check_tools(data.get("tool_names"))
        agent = await self.create({k: v for k, v in data.items() if v is not None})
        logger.info(f"Created agent '{agent.name}' ({agent.id}) with tools {agent.tool_names}")
        return agent

    async def update_agent(self, agent_id: str, data: dict[str, Any]) -> Agent:
        if data.get("tool_names") is not None:
            data = dict(data)
            data["tool_names"] = self._check_tools(data["tool_names"])
        return await self.update(agent_id, data)

    async def list_agents(self, active_only: bool = False, offset: int = 0, limit: int = 50):
        filters = {"is_active": True} if active_only else None
        return await self.list(offset=offset, limit=limit, filters=filters)
