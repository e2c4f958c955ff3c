"""Agent management endpoints."""

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.agent import AgentCreate, AgentListResponse, AgentResponse, AgentUpdate
from api.schemas.common import PaginationParams
from app.dependencies import get_db, get_tool_registry
from core.utils import calculate_offset
from services.agent_service import AgentService
from tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["agents"])


def _service(
    db: AsyncSession = Depends(get_db),
    registry: ToolRegistry = Depends(get_tool_registry),
) -> AgentService:
    return AgentService(db, registry)


@router.get("/", response_model=AgentListResponse)
async def list_agents(
    pagination: PaginationParams = Depends(),
    active_only: bool = Query(False),
    svc: AgentService = Depends(_service),
) -> AgentListResponse:
    offset = calculate_offset(pagination.page, pagination.per_page)
    agents, total = await svc.list_agents(active_only, offset, pagination.per_page)
    return AgentListResponse(
        agents=[AgentResponse.model_validate(a) for a in agents],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(request: AgentCreate, svc: AgentService = Depends(_service)) -> AgentResponse:
    """
    Create an agent. Every entry in tool_names must be a registered tool.
    """
    agent = await svc.create_agent(request.model_dump())
    return AgentResponse.model_validate(agent)


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, svc: AgentService = Depends(_service)) -> AgentResponse:
    return AgentResponse.model_validate(await svc.get_or_404(agent_id))


@router.put("/{agent_id}", response_model=AgentResponse)
async def update_agent(
    agent_id: str,
    request: AgentUpdate,
    svc: AgentService = Depends(_service),
) -> AgentResponse:
    agent = await svc.update_agent(agent_id, request.model_dump(exclude_unset=True))
    return AgentResponse.model_validate(agent)


@router.post("/{agent_id}/activate", response_model=AgentResponse)
async def activate_agent(agent_id: str, svc: AgentService = Depends(_service)) -> AgentResponse:
    return AgentResponse.model_validate(await svc.update(agent_id, {"is_active": True}))


@router.post("/{agent_id}/deactivate", response_model=AgentResponse)
async def deactivate_agent(agent_id: str, svc: AgentService = Depends(_service)) -> AgentResponse:
    return AgentResponse.model_validate(await svc.update(agent_id, {"is_active": False}))


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(agent_id: str, svc: AgentService = Depends(_service)):
    await svc.soft_delete(agent_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
