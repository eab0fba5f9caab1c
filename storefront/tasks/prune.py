# storefront/tasks/prune.py
import asyncio

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from storefront.celery_worker import celery_app
from storefront.repos.cart_repo import prune_invalid_lines
from storefront.utils.settings import DATABASE_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


async def prune(session_factory: async_sessionmaker[AsyncSession] | None = None) -> int:
    if session_factory is not None:
        return await prune_invalid_lines(session_factory)

    # osobny engine na kazde uruchomienie - asyncio.run tworzy nowa petle
    engine = create_async_engine(DATABASE_URL)
    try:
        return await prune_invalid_lines(async_sessionmaker(engine, expire_on_commit=False))
    finally:
        await engine.dispose()


@celery_app.task(name="storefront.tasks.prune.prune_cart_lines_task")
def prune_cart_lines_task():
    logger.info("Prune cart lines task started")
    removed = asyncio.run(prune())
    logger.info(f"Prune cart lines task removed {removed} lines")
    return {"removed": removed}
