"""Worker-safe session factory for Celery tasks.

Each task runs on its own event loop, so it gets a fresh async engine
instead of sharing pooled connections with another loop.
"""

from contextlib import asynccontextmanager

from db.database import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_session_factory():
    """Yield a session factory bound to a short-lived engine.

    Usage:
        async with worker_session_factory() as session_factory:
            orchestrator = build_orchestrator(session_factory)
            ...
    """
    engine = create_db_engine(echo=False)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
