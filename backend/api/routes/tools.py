"""Tool registry endpoints."""

from fastapi import APIRouter, Depends
from typing import List

from api.schemas.common import ToolResponse
from app.dependencies import get_tool_registry
from tools.registry import ToolRegistry

router = APIRouter(tags=["tools"])


@router.get("/", response_model=List[ToolResponse])
async def list_tools(registry: ToolRegistry = Depends(get_tool_registry)) -> List[ToolResponse]:
    """
    Declarations of every registered tool, in the shape sent to the model.
    """
    return [ToolResponse(**definition) for definition in registry.list_all()]
