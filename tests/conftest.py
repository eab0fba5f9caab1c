import os

# przed importem storefront - settings czytane sa przy imporcie
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.data.database import init_db
from storefront.repos.cart_repo import RemoteCartRepository
from storefront.repos.product_repo import ProductRepo
from storefront.repos.session_store import SessionStore
from storefront.services.cart_service import CartStateManager


class RecordingNotifier:
    def __init__(self):
        self.receipts = []

    def send_checkout_notification(self, receipt):
        self.receipts.append(receipt)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def redis_client():
    # osobny serwer na test, inaczej instancje dziela dane
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def products(session_factory):
    return ProductRepo(session_factory)


@pytest_asyncio.fixture
async def catalog(products):
    """Keyboard (stock 5), Mouse (stock 10), Monitor (stock 2)."""
    return {
        "keyboard": await products.add_product("Keyboard", "100.00", 5, images=["kb.png"]),
        "mouse": await products.add_product("Mouse", "20.50", 10),
        "monitor": await products.add_product("Monitor", "899.00", 2),
    }


@pytest.fixture
def session_store(redis_client):
    return SessionStore("tab-1", client=redis_client)


@pytest.fixture
def remote_factory(session_factory):
    def factory(user_id):
        return RemoteCartRepository(session_factory, user_id)

    return factory


@pytest.fixture
def make_cart(session_store, products, remote_factory):
    def factory(store=None, product_repo=None, remote=None):
        return CartStateManager(
            session_store=store or session_store,
            products=product_repo or products,
            remote_factory=remote or remote_factory,
        )

    return factory


@pytest.fixture
def notifier():
    return RecordingNotifier()
