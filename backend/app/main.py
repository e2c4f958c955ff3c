"""Agent Workflow Engine - FastAPI Application."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import get_settings
from api.v1.router import api_v1_router
from api.routes import health
from core.logging_config import setup_logging
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db.database import AsyncSessionLocal, close_db, init_db
from workflow.engine import WorkflowOrchestrator, build_orchestrator


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request, call_next):
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        settings = get_settings()
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    if app.state.manage_database:
        await init_db()

    orchestrator: WorkflowOrchestrator = app.state.orchestrator
    model_client = orchestrator.config.model_client
    if getattr(model_client, "is_configured", True):
        print(f"[startup] Model client ready (model: {orchestrator.config.default_model})")
    else:
        print("[startup] Claude AI not configured (set ANTHROPIC_API_KEY to enable)")

    print(f"[startup] Tool registry ready ({len(orchestrator.config.tool_registry.tool_names)} tool(s))")

    # Approvals that fell due while the process was down
    try:
        expired = await orchestrator.sweep_approvals()
        if expired:
            print(f"[startup] Timed out {len(expired)} overdue approval(s)")
    except Exception as e:
        print(f"[startup] Approval sweep skipped: {e}")

    print(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    # Shutdown
    await orchestrator.shutdown()
    if hasattr(model_client, "disconnect"):
        await model_client.disconnect()
    if app.state.manage_database:
        await close_db()
    print("[shutdown] Application shutting down...")


def create_app(
    session_factory=None,
    model_client=None,
    tool_registry=None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        session_factory: async session factory (defaults to AsyncSessionLocal;
            when given, the caller owns schema creation)
        model_client: object with `async create_message(**request)`
            (defaults to the Claude client)
        tool_registry: tool registry (defaults to the built-in tools)
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Workflow orchestration with tool-calling language-model agents, "
                    "human approvals and cron schedules.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    app.state.manage_database = session_factory is None
    app.state.session_factory = session_factory or AsyncSessionLocal
    app.state.orchestrator = build_orchestrator(
        app.state.session_factory,
        model_client=model_client,
        tool_registry=tool_registry,
    )

    # Request tracking middleware
    app.add_middleware(RequestTrackingMiddleware)

    # Security headers middleware
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    # Global exception handlers
    setup_exception_handlers(app)

    # Root health check (unversioned, for load balancers / k8s probes)
    app.include_router(health.router, prefix="/api", tags=["Health"])

    # Versioned API: all business endpoints under /api/v1
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()
