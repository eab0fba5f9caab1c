# storefront/main.py
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from storefront.api.routers import carts, checkout, health
from storefront.data.database import SessionLocal, init_db
from storefront.services.cart_registry import CartRegistry
from storefront.services.notification_service import NotificationService
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Initializing database...")
    await init_db()
    yield


def create_app(
    registry: CartRegistry | None = None,
    notifier: NotificationService | None = None,
) -> FastAPI:
    # wstrzykniety registry (testy) -> baza juz przygotowana, bez lifespan
    use_lifespan = registry is None
    if registry is None:
        registry = CartRegistry(SessionLocal)
        notifier = notifier or NotificationService()

    app = FastAPI(
        title="Storefront Cart Service",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else None,
    )
    app.state.registry = registry
    app.state.notifier = notifier

    # Include routers
    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(checkout.router)

    return app


app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
