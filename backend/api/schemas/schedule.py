"""Schedule schemas."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional


class ScheduleCreate(BaseModel):
    """Request to create a schedule."""

    workflow_id: str = Field(description="Workflow to start")
    name: str = Field(min_length=1)
    cron_expression: str = Field(description="Five-field cron expression, e.g. '0 9 * * 1-5'")
    timezone: str = Field(default="UTC", description="IANA timezone the cron expression is read in")
    trigger_payload: Dict[str, Any] = Field(default={}, description="Payload passed to each execution")
    is_enabled: bool = True


class ScheduleUpdate(BaseModel):
    """Request to update a schedule."""

    name: Optional[str] = Field(default=None, min_length=1)
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    trigger_payload: Optional[Dict[str, Any]] = None
    is_enabled: Optional[bool] = None


class ScheduleResponse(BaseModel):
    """Schedule information response."""

    id: str
    workflow_id: str
    name: str
    cron_expression: str
    timezone: str
    is_enabled: bool
    trigger_payload: Optional[Dict[str, Any]] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ScheduleListResponse(BaseModel):
    """Paginated list of schedules."""

    schedules: List[ScheduleResponse]
    total: int
    page: int
    per_page: int

