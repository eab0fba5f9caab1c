# storefront/services/checkout_service.py
from dataclasses import dataclass, field
from decimal import Decimal

from storefront.domain.errors import CartError, PartialCheckoutFailure, PersistenceError, ValidationError
from storefront.domain.result import Result
from storefront.domain.schemas import CartLine
from storefront.repos.product_repo import ProductRepo
from storefront.services.cart_service import CartStateManager, calculate_total_price
from storefront.services.notification_service import NotificationService
from storefront.utils.settings import CHECKOUT_STOCK_CAS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

EMPTY = "empty"
COMPLETED = "completed"


@dataclass(frozen=True)
class CheckoutReceipt:
    status: str
    items: tuple[CartLine, ...] = ()
    total: Decimal = Decimal("0.00")
    user_id: str | None = None
    notices: tuple[str, ...] = field(default_factory=tuple)


class CheckoutCoordinator:
    """
    Checkout:
    1. pusty koszyk -> "empty", to nie jest blad
    2. walidacja wszystkich pozycji wzgledem aktualnego stocku z bazy
    3. dekrementacja stocku SEKWENCYJNIE, sukces/porazka osobno per pozycja
    4. wszystko ok -> czyszczenie koszyka + powiadomienie
    5. cokolwiek padlo -> PartialCheckoutFailure, bez rollbacku, koszyk NIE jest czyszczony

    Punkt 5 to swiadomie zachowana slaba spojnosc - nie ma transakcji na wiele wierszy.
    """

    def __init__(
        self,
        cart: CartStateManager,
        products: ProductRepo,
        notifier: NotificationService | None = None,
        stock_cas: bool = CHECKOUT_STOCK_CAS,
    ):
        self.cart = cart
        self.products = products
        self.notifier = notifier
        self.stock_cas = stock_cas

    async def checkout(self) -> Result[CheckoutReceipt]:
        async with self.cart.exclusive():
            items = self.cart.items
            if not items:
                receipt = CheckoutReceipt(status=EMPTY, user_id=self.cart.user_id, notices=("Your cart is empty",))
            else:
                try:
                    await self._decrement_stock(items)
                except CartError as e:
                    logger.warning(f"Checkout failed ({e.kind}): {e.message}")
                    self.cart.error = e.message
                    self.cart.notify(e.message, level="error")
                    return Result.failure(e)

                # clear_cart sam raportuje swoj blad
                clear_result = await self.cart.clear_cart()
                if not clear_result.ok:
                    return Result.failure(clear_result.error)

                receipt = CheckoutReceipt(
                    status=COMPLETED,
                    items=tuple(items),
                    total=calculate_total_price(items),
                    user_id=self.cart.user_id,
                    notices=("Your order has been placed successfully",),
                )
                logger.info(
                    f"Checkout completed: {len(items)} lines, total {receipt.total} (user={receipt.user_id})"
                )
                if self.notifier is not None:
                    try:
                        self.notifier.send_checkout_notification(receipt)
                    except Exception as e:
                        logger.warning(f"Failed to enqueue checkout notification: {e}")

        for notice in receipt.notices:
            self.cart.notify(notice, level="info")
        return Result.success(receipt, receipt.notices)

    async def _decrement_stock(self, items: list[CartLine]) -> None:
        # stock mogl sie zmienic od czasu snapshotu w koszyku
        current = await self.products.get_products(line.product_id for line in items)
        stock_now = {
            line.product_id: current[line.product_id].stock if line.product_id in current else 0
            for line in items
        }

        insufficient = [line.product.name for line in items if line.quantity > stock_now[line.product_id]]
        if insufficient:
            raise ValidationError(
                f"Insufficient stock for: {', '.join(insufficient)}",
                products=insufficient,
            )

        failed: list[str] = []
        for line in items:
            available = stock_now[line.product_id]
            new_stock = max(0, available - line.quantity)
            logger.info(
                f"Updating stock for {line.product.name} - current stock: {available}, "
                f"quantity: {line.quantity}, new stock: {new_stock}"
            )
            try:
                updated = await self.products.update_product(
                    line.product_id,
                    stock=new_stock,
                    expected_stock=available if self.stock_cas else None,
                )
            except PersistenceError as e:
                logger.error(f"Error updating stock for product {line.product_id}: {e.message}")
                updated = None

            if updated is None:
                failed.append(line.product.name)

        if failed:
            raise PartialCheckoutFailure(failed)
