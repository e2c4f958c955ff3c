"""Schedule management endpoints.

CRUD for workflow schedules with cron-expression validation,
timezone support, enable/disable toggle, and next-run computation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from api.schemas.common import PaginationParams
from api.schemas.schedule import (
    ScheduleCreate,
    ScheduleListResponse,
    ScheduleResponse,
    ScheduleUpdate,
)
from app.dependencies import get_db
from core.utils import calculate_offset
from services.schedule_service import ScheduleService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["schedules"])


@router.get("/", response_model=ScheduleListResponse)
async def list_schedules(
    pagination: PaginationParams = Depends(),
    workflow_id: Optional[str] = Query(None, description="Filter by workflow ID"),
    db: AsyncSession = Depends(get_db),
) -> ScheduleListResponse:
    offset = calculate_offset(pagination.page, pagination.per_page)
    schedules, total = await ScheduleService(db).list_schedules(workflow_id, offset, pagination.per_page)
    return ScheduleListResponse(
        schedules=[ScheduleResponse.model_validate(s) for s in schedules],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
    )


@router.post("/", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    request: ScheduleCreate,
    db: AsyncSession = Depends(get_db),
) -> ScheduleResponse:
    """
    Create a schedule. The cron expression and timezone are validated and
    the first run is computed immediately.
    """
    schedule = await ScheduleService(db).create_schedule(**request.model_dump())
    return ScheduleResponse.model_validate(schedule)


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(schedule_id: str, db: AsyncSession = Depends(get_db)) -> ScheduleResponse:
    return ScheduleResponse.model_validate(await ScheduleService(db).get_or_404(schedule_id))


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    schedule_id: str,
    request: ScheduleUpdate,
    db: AsyncSession = Depends(get_db),
) -> ScheduleResponse:
    schedule = await ScheduleService(db).update_schedule(schedule_id, request.model_dump(exclude_unset=True))
    return ScheduleResponse.model_validate(schedule)


@router.post("/{schedule_id}/enable", response_model=ScheduleResponse)
async def enable_schedule(schedule_id: str, db: AsyncSession = Depends(get_db)) -> ScheduleResponse:
    return ScheduleResponse.model_validate(await ScheduleService(db).set_enabled(schedule_id, True))


@router.post("/{schedule_id}/disable", response_model=ScheduleResponse)
async def disable_schedule(schedule_id: str, db: AsyncSession = Depends(get_db)) -> ScheduleResponse:
    return ScheduleResponse.model_validate(await ScheduleService(db).set_enabled(schedule_id, False))


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(schedule_id: str, db: AsyncSession = Depends(get_db)):
    await ScheduleService(db).soft_delete(schedule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
