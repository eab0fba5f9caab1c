# storefront/services/cart_registry.py
import asyncio
import time
from typing import Callable

import redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.repos.cart_repo import RemoteCartRepository
from storefront.repos.product_repo import ProductRepo
from storefront.repos.session_store import SessionStore, session_client
from storefront.services.auth_bridge import AuthBridge
from storefront.services.cart_service import CartStateManager
from storefront.utils.settings import SESSION_TTL_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartRegistry:
    """
    Jeden CartStateManager + AuthBridge na sesje przegladarki.
    Trzymane w pamieci procesu - brak wpisu odtwarza stan z autorytatywnego backendu.
    Wpis nieuzywany dluzej niz TTL sesji jest usuwany (snapshot w redisie i tak juz wygasl).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        redis_client: redis.Redis | None = None,
        idle_ttl: float = SESSION_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.redis = redis_client or session_client()
        self.products = ProductRepo(session_factory)
        self.idle_ttl = idle_ttl
        self.clock = clock
        self._carts: dict[str, tuple[CartStateManager, AuthBridge]] = {}
        self._last_seen: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._carts)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._carts

    def _remote(self, user_id: str) -> RemoteCartRepository:
        return RemoteCartRepository(self.session_factory, user_id)

    def _evict_idle(self, now: float) -> None:
        expired = [sid for sid, seen in self._last_seen.items() if now - seen > self.idle_ttl]
        for session_id in expired:
            self._carts.pop(session_id, None)
            self._last_seen.pop(session_id, None)
        if expired:
            logger.info(f"Evicted {len(expired)} idle cart sessions")

    async def get(self, session_id: str, user_id: str | None = None) -> CartStateManager:
        async with self._lock:
            now = self.clock()
            self._evict_idle(now)
            self._last_seen[session_id] = now

            entry = self._carts.get(session_id)
            if entry is None:
                entry = await self._create(session_id, user_id)
                self._carts[session_id] = entry
                return entry[0]

        cart, bridge = entry
        await bridge.observe(user_id)

        # poprzedni load / przelogowanie padlo - stan w pamieci nie odpowiada backendowi
        if cart.needs_reload:
            logger.info(f"Reloading cart session {session_id} after failed load (user={bridge.user_id})")
            await cart.initialize(bridge.user_id)
        return cart

    async def _create(self, session_id: str, user_id: str | None):
        async def provider():
            return user_id

        cart = CartStateManager(
            session_store=SessionStore(session_id, client=self.redis),
            products=self.products,
            remote_factory=self._remote,
        )
        bridge = AuthBridge(provider)
        cart.attach(bridge)

        await cart.initialize(await bridge.start())
        logger.info(f"Cart session {session_id} created (user={bridge.user_id})")
        return cart, bridge
