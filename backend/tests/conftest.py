"""Shared pytest fixtures for the Agent Workflow Engine test suite.

Provides:
- A file-backed async SQLite database per test (no PostgreSQL needed)
- Async session factory and session
- Scripted model clients and a tool registry with deterministic tools
- An orchestrator wired to all of the above
- FastAPI test client (httpx.AsyncClient over ASGITransport)
"""

import os
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("ANTHROPIC_API_KEY", "")
os.environ.setdefault("OPS_MCP_ENABLED", "false")

from core.exceptions import ToolError  # noqa: E402
from db.database import create_db_engine, create_session_factory, init_db  # noqa: E402
from fakes import FakeModelClient, text_response  # noqa: E402
from tools.registry import ToolRegistry  # noqa: E402
from workflow.definition import EngineConfig  # noqa: E402
from workflow.engine import WorkflowOrchestrator  # noqa: E402


PRODUCTS = [
    {"id": "p-1", "name": "Cordless Drill 18V", "price": "89.90", "category": "tools"},
    {"id": "p-2", "name": "Hammer Drill 750W", "price": "64.50", "category": "tools"},
]


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """A fresh SQLite database file with all tables created."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A DB session that commits on teardown."""
    async with session_factory() as session:
        yield session
        await session.commit()


# ---------------------------------------------------------------------------
# Model client / tools / engine
# ---------------------------------------------------------------------------

@pytest.fixture
def model_client() -> FakeModelClient:
    return FakeModelClient(default=text_response("All done."))


@pytest.fixture
def tool_registry() -> ToolRegistry:
    """Registry with deterministic commerce-like tools."""
    registry = ToolRegistry()

    async def search_products(tool_input):
        query = tool_input["query"].lower()
        return [p for p in PRODUCTS if query in p["name"].lower() or query in p["category"]]

    async def lookup_order(tool_input):
        if tool_input["order_number"] == "missing":
            raise ToolError("Order missing not found")
        return {"order_number": tool_input["order_number"], "status": "shipped"}

    async def broken(tool_input):
        raise RuntimeError("upstream exploded")

    registry.register_function(
        "search_products",
        "Search the catalogue",
        {
            "type": "object",
            "properties": {"query": {"type": "string"}, "limit": {"type": "integer"}},
            "required": ["query"],
        },
        search_products,
    )
    registry.register_function(
        "lookup_order",
        "Look up an order",
        {
            "type": "object",
            "properties": {"order_number": {"type": "string"}},
            "required": ["order_number"],
        },
        lookup_order,
    )
    registry.register_function(
        "broken_tool",
        "Always fails",
        {"type": "object", "properties": {}},
        broken,
    )
    return registry


@pytest.fixture
def engine_config(model_client, tool_registry) -> EngineConfig:
    return EngineConfig(
        model_client=model_client,
        tool_registry=tool_registry,
        default_model="claude-test",
        max_tool_turns=5,
        fallback_message="Sorry, I could not finish that.",
        default_step_timeout=30.0,
    )


@pytest_asyncio.fixture
async def orchestrator(session_factory, engine_config) -> AsyncGenerator[WorkflowOrchestrator, None]:
    orch = WorkflowOrchestrator(session_factory, engine_config)
    yield orch
    await orch.shutdown()


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def make_agent(session_factory):
    """Factory creating an Agent row."""
    from db.models.agent import Agent

    async def _make(**fields):
        fields.setdefault("name", "Product Assistant")
        fields.setdefault("system_prompt", "Answer product questions.")
        fields.setdefault("tool_names", ["search_products"])
        agent = Agent(**fields)
        async with session_factory() as session:
            session.add(agent)
            await session.commit()
            await session.refresh(agent)
        return agent

    return _make


@pytest_asyncio.fixture
async def agent(make_agent):
    return await make_agent()


@pytest_asyncio.fixture
async def make_execution(session_factory):
    """Factory creating a bare WorkflowExecution row (and its workflow)."""
    from core.constants import ExecutionStatus
    from db.models.execution import WorkflowExecution
    from db.models.workflow import Workflow

    async def _make(status=ExecutionStatus.RUNNING, trigger_payload=None):
        async with session_factory() as session:
            workflow = Workflow(name="Scratch workflow")
            session.add(workflow)
            await session.flush()
            execution = WorkflowExecution(
                workflow_id=workflow.id,
                status=status.value,
                trigger_payload=trigger_payload or {},
            )
            session.add(execution)
            await session.commit()
            return execution.id

    return _make


@pytest_asyncio.fixture
async def make_workflow(session_factory):
    """Factory creating a Workflow with steps through the service layer."""
    from services.workflow_service import WorkflowService

    async def _make(steps, **fields):
        fields.setdefault("name", "Test Workflow")
        async with session_factory() as session:
            workflow = await WorkflowService(session).create_workflow(steps=steps, **fields)
            await session.commit()
        return workflow

    return _make


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory, model_client, tool_registry):
    """FastAPI app wired to the test database and the scripted model."""
    from app.main import create_app

    test_app = create_app(
        session_factory=session_factory,
        model_client=model_client,
        tool_registry=tool_registry,
    )
    yield test_app
    await test_app.state.orchestrator.shutdown()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
