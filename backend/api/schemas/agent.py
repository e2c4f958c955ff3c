"""Agent schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class AgentCreate(BaseModel):
    """Request to create an agent."""

    name: str = Field(min_length=1, description="Agent name")
    description: Optional[str] = Field(default="", description="What the agent is for")
    model_name: Optional[str] = Field(default=None, description="Model ID (defaults to CLAUDE_MODEL)")
    system_prompt: str = Field(default="", description="System instruction")
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(default=1024, ge=1, le=64000)
    tool_names: List[str] = Field(default=[], description="Registered tools the agent may call")
    config: Optional[Dict[str, Any]] = None
    is_active: bool = True


class AgentUpdate(BaseModel):
    """Request to update an agent."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    model_name: Optional[str] = None
    system_prompt: Optional[str] = None
    temperature: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_tokens: Optional[int] = Field(default=None, ge=1, le=64000)
    tool_names: Optional[List[str]] = None
    config: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class AgentResponse(BaseModel):
    """Agent information response."""

    id: str
    name: str
    description: str
    model_name: Optional[str] = None
    system_prompt: str
    temperature: float
    max_tokens: int
    tool_names: Optional[List[str]] = None
    config: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AgentListResponse(BaseModel):
    """Paginated list of agents."""

    agents: List[AgentResponse]
    total: int
    page: int
    per_page: int
