# storefront/services/cart_service.py
import asyncio
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, TypeVar

from storefront.domain.errors import CartError, NotFoundError, PersistenceError, ValidationError
from storefront.domain.result import Result
from storefront.domain.schemas import CartLine
from storefront.repos.cart_repo import RemoteCartRepository
from storefront.repos.product_repo import ProductRepo
from storefront.repos.session_store import SessionStore
from storefront.services.auth_bridge import AuthBridge
from storefront.services.stock_validator import clamp_to_stock, ensure_within_stock, stock_message
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CartEvent:
    """kind: "items" (zmiana stanu) albo "notice" (komunikat dla uzytkownika)."""

    kind: str
    items: tuple[CartLine, ...] = ()
    message: str | None = None
    level: str = "info"


Listener = Callable[[CartEvent], None]


def new_session_line_id() -> str:
    return f"session-{uuid.uuid4().hex}"


def calculate_total_items(items: list[CartLine]) -> int:
    return sum(line.quantity for line in items)


def calculate_total_price(items: list[CartLine]) -> Decimal:
    total = sum((line.subtotal for line in items), Decimal("0.00"))
    return total.quantize(Decimal("0.01"))


class CartStateManager:
    """
    Stan koszyka w pamieci + synchronizacja z backendem ktory jest aktualnie autorytatywny:
    -anonim -> SessionStore (redis, per sesja)
    -zalogowany -> RemoteCartRepository (tabela cart_items)

    Kazda mutacja: walidacja stocku, optimistic update, zapis, revert do snapshotu przy bledzie.
    Operacje na jednej instancji sa serializowane lockiem (exclusive()).
    Mutatory nie rzucaja bledow domenowych - zwracaja Result.
    """

    def __init__(
        self,
        session_store: SessionStore,
        products: ProductRepo,
        remote_factory: Callable[[str], RemoteCartRepository],
    ):
        self.session_store = session_store
        self.products = products
        self.remote_factory = remote_factory

        self.user_id: str | None = None
        self.is_loading = False
        self.error: str | None = None
        # True dopoki stan nie zostal poprawnie wczytany z backendu (albo ostatni reload padl)
        self.needs_reload = True

        self._items: list[CartLine] = []
        self._listeners: list[Listener] = []
        self._remote: RemoteCartRepository | None = None
        self._lock = asyncio.Lock()
        self._owner: asyncio.Task | None = None

    # =====================================================
    # QUERY
    # =====================================================
    @property
    def items(self) -> list[CartLine]:
        return list(self._items)

    @property
    def total_items(self) -> int:
        return calculate_total_items(self._items)

    @property
    def total_price(self) -> Decimal:
        return calculate_total_price(self._items)

    def find_line(self, item_id: str) -> CartLine | None:
        return next((line for line in self._items if line.id == item_id), None)

    def find_by_product(self, product_id: str) -> CartLine | None:
        return next((line for line in self._items if line.product_id == product_id), None)

    # =====================================================
    # SUBSKRYPCJE
    # =====================================================
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: CartEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Cart listener {listener!r} failed: {e}")

    def _set_items(self, items: list[CartLine]) -> None:
        self._items = list(items)
        self._emit(CartEvent(kind="items", items=tuple(self._items)))

    def notify(self, message: str, level: str = "info") -> None:
        self._emit(CartEvent(kind="notice", message=message, level=level))

    # =====================================================
    # LOCK / AUTH
    # =====================================================
    @asynccontextmanager
    async def exclusive(self):
        """Lock operacji; reentrant w obrebie jednego taska (checkout -> clear_cart)."""
        task = asyncio.current_task()
        if self._owner is not None and self._owner is task:
            yield self
            return

        async with self._lock:
            self._owner = task
            try:
                yield self
            finally:
                self._owner = None

    def attach(self, bridge: AuthBridge) -> Callable[[], None]:
        return bridge.subscribe(self.handle_login, self.handle_logout)

    def _remote_repo(self) -> RemoteCartRepository:
        if self.user_id is None:
            raise RuntimeError("remote cart requested for anonymous session")
        if self._remote is None or self._remote.user_id != self.user_id:
            self._remote = self.remote_factory(self.user_id)
        return self._remote

    def _fail(self, action: str, error: CartError) -> Result:
        self.error = error.message
        logger.warning(f"Cart operation '{action}' failed ({error.kind}): {error.message}")
        self.notify(error.message, level="error")
        return Result.failure(error)

    async def _guard(self, action: str, fn, *args) -> Result:
        """Granica operacji: CartError -> Result.failure + notyfikacja."""
        self.is_loading = True
        self.error = None
        try:
            value, warnings = await fn(*args)
        except CartError as e:
            return self._fail(action, e)
        except OSError as e:
            # blad polaczenia z drivera, ktory nie przeszedl przez SQLAlchemy / redis-py
            logger.error(f"Storage connection error during '{action}': {e}")
            return self._fail(action, PersistenceError("Cart storage is unreachable"))
        finally:
            self.is_loading = False

        for warning in warnings:
            self.notify(warning, level="warning")
        return Result.success(value, warnings)

    async def _apply(self, optimistic: list[CartLine], persist: Callable[[], Awaitable[T]]) -> T:
        snapshot = list(self._items)
        self._set_items(optimistic)
        try:
            return await persist()
        except Exception as e:
            logger.info(f"Reverting optimistic cart update: {e}")
            self._set_items(snapshot)
            raise

    # =====================================================
    # INIT / REKONCYLIACJA
    # =====================================================
    async def initialize(self, user_id: str | None = None) -> Result:
        async with self.exclusive():
            return await self._guard("initialize cart", self._load, user_id)

    async def _load(self, user_id: str | None):
        self.needs_reload = True
        self.user_id = user_id or None
        if self.user_id:
            remote = self._remote_repo()
            await remote.prune_invalid()
            items = await remote.load()
        else:
            items = self.session_store.load()

        logger.info(f"Cart initialized with {len(items)} lines (user={self.user_id})")
        self._set_items(items)
        self.needs_reload = False
        return self.items, []

    async def handle_login(self, user_id: str) -> Result:
        async with self.exclusive():
            return await self._guard("load cart after login", self._login, user_id)

    async def _login(self, user_id: str):
        # zastapienie, nie merge - koszyk anonimowy nie przechodzi na konto
        self._set_items([])
        try:
            self.session_store.clear()
        except CartError as e:
            logger.warning(f"Could not discard session cart on login: {e.message}")
        return await self._load(user_id)

    async def handle_logout(self) -> Result:
        async with self.exclusive():
            return await self._guard("reset cart after logout", self._logout)

    async def _logout(self):
        self.needs_reload = True
        self.user_id = None
        self._remote = None
        self._set_items([])
        self.session_store.clear()
        logger.info("Cart reset after logout")
        self.needs_reload = False
        return [], []

    # =====================================================
    # COMMANDS
    # =====================================================
    async def add_to_cart(self, product_id: str, quantity: int = 1) -> Result:
        async with self.exclusive():
            return await self._guard("add to cart", self._add_to_cart, product_id, quantity)

    async def update_quantity(self, item_id: str, quantity: int) -> Result:
        async with self.exclusive():
            return await self._guard("update quantity", self._update_quantity, item_id, quantity)

    async def remove_from_cart(self, item_id: str) -> Result:
        async with self.exclusive():
            return await self._guard("remove from cart", self._remove_from_cart, item_id)

    async def clear_cart(self) -> Result:
        async with self.exclusive():
            return await self._guard("clear cart", self._clear_cart)

    async def _add_to_cart(self, product_id: str, quantity: int):
        if quantity <= 0:
            raise ValidationError("Quantity must be greater than 0")

        warnings: list[str] = []
        existing = self.find_by_product(product_id)

        if existing:
            stock = existing.product.stock
            new_quantity = existing.quantity + quantity

            if new_quantity > stock:
                if existing.quantity >= stock:
                    raise ValidationError(stock_message(stock), products=[existing.product.name])
                new_quantity, warning = clamp_to_stock(new_quantity, existing.product)
                warnings.append(warning)

            logger.info(
                f"Produkt {product_id} juz jest w koszyku, zwiekszam ilosc "
                f"z {existing.quantity} do {new_quantity}"
            )
            line = existing.model_copy(update={"quantity": new_quantity})
        else:
            product = await self.products.get_product(product_id)
            if product is None:
                raise NotFoundError("Product not found")

            ensure_within_stock(quantity, product)
            logger.info(f"Dodaje nowy produkt {product_id} do koszyka (user={self.user_id})")
            line = CartLine(
                id=new_session_line_id(),
                product_id=product_id,
                quantity=quantity,
                product=product,
            )

        # nowa pozycja w pamieci moze juz istniec w bazie (inna sesja tego usera) -> dodajemy
        saved = await self._write_line(line, warnings, increment=existing is None)
        if saved is None:
            raise ValidationError(f"{line.product.name} is out of stock.", products=[line.product.name])
        return saved, warnings

    async def _update_quantity(self, item_id: str, quantity: int):
        if quantity <= 0:
            await self._remove_from_cart(item_id)
            return None, []

        line = self.find_line(item_id)
        if line is None:
            raise NotFoundError(f"Cart item {item_id} not found")

        warnings: list[str] = []
        quantity, warning = clamp_to_stock(quantity, line.product)
        if warning:
            logger.warning(f"Requested quantity for {line.product_id} capped to stock {quantity}")
            warnings.append(warning)

        if quantity == line.quantity:
            return line, warnings

        saved = await self._write_line(line.model_copy(update={"quantity": quantity}), warnings)
        if saved is None:
            raise ValidationError(f"{line.product.name} is out of stock.", products=[line.product.name])
        return saved, warnings

    async def _remove_from_cart(self, item_id: str):
        line = self.find_line(item_id)
        if line is None:
            raise NotFoundError(f"Cart item {item_id} not found")

        optimistic = [item for item in self._items if item.id != item_id]

        async def persist():
            if self.user_id:
                await self._remote_repo().delete(item_id)
            else:
                self.session_store.delete(item_id)

        await self._apply(optimistic, persist)
        logger.info(f"Pozycja {item_id} usunieta z koszyka (user={self.user_id})")
        return line, []

    async def _clear_cart(self):
        async def persist():
            if self.user_id:
                await self._remote_repo().clear()
            else:
                self.session_store.clear()

        await self._apply([], persist)
        return None, []

    # =====================================================
    # ZAPIS POZYCJI
    # =====================================================
    async def _write_line(
        self,
        line: CartLine,
        warnings: list[str],
        increment: bool = False,
    ) -> CartLine | None:
        optimistic = list(self._items)
        index = next(
            (i for i, item in enumerate(optimistic) if item.product_id == line.product_id),
            None,
        )
        if index is None:
            optimistic.append(line)
        else:
            optimistic[index] = line

        async def persist() -> CartLine | None:
            if not self.user_id:
                return self.session_store.upsert(line)

            saved = await self._settle(
                await self._remote_repo().upsert(line, increment=increment), warnings
            )
            if saved is None:
                self._set_items([item for item in self._items if item.id != line.id])
            else:
                self._set_items([saved if item.id == line.id else item for item in self._items])
            return saved

        return await self._apply(optimistic, persist)

    async def _settle(self, saved: CartLine, warnings: list[str]) -> CartLine | None:
        """
        Repo zwraca swiezy snapshot produktu - jesli stock spadl w miedzyczasie
        ponizej ilosci, poprawiamy pozycje zanim mutacja sie zakonczy.
        """
        stock = saved.product.stock
        if saved.quantity <= stock:
            return saved

        remote = self._remote_repo()
        if stock >= 1:
            logger.warning(f"Stock of {saved.product_id} dropped to {stock}, capping cart line {saved.id}")
            warnings.append(stock_message(stock))
            return await remote.upsert(saved.model_copy(update={"quantity": stock}))

        logger.warning(f"Product {saved.product_id} is out of stock, dropping cart line {saved.id}")
        await remote.delete(saved.id)
        return None
