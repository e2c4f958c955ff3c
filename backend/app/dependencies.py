"""FastAPI dependency injection functions.

The session factory, orchestrator and tool registry live on `app.state`
(set up in app.main.create_app), so tests can build an app around their
own database and model client.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from tools.registry import ToolRegistry
from workflow.engine import WorkflowOrchestrator

logger = logging.getLogger(__name__)


def get_session_factory(request: Request):
    return request.app.state.session_factory


async def get_db(session_factory=Depends(get_session_factory)) -> AsyncSession:
    """
    Provide a database session for API endpoints.

    Yields an async SQLAlchemy session that is automatically
    committed on success or rolled back on error.
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.error(f"Database error: {str(e)}")
            await session.rollback()
            raise


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


def get_tool_registry(request: Request) -> ToolRegistry:
    return request.app.state.orchestrator.config.tool_registry
