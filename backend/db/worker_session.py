"""Worker-safe session factory for Celery tasks.

Creates a fresh async engine per tick to avoid the 'Future attached
to a different loop' error when asyncpg connections are shared
across event loops in forked Celery workers.
"""

from contextlib import asynccontextmanager

from db.session import create_db_engine, create_session_factory


@asynccontextmanager
async def worker_sessionmaker():
    """Provide a session factory bound to a tick-scoped engine.

    Usage:
        async with worker_sessionmaker() as session_factory:
            summary = await TriggerEvaluator(session_factory, ...).tick()
    """
    engine = create_db_engine(pool_recycle=300)
    try:
        yield create_session_factory(engine)
    finally:
        await engine.dispose()
