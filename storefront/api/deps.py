# storefront/api/deps.py
from fastapi import Depends, Header, HTTPException, Request

from storefront.domain.errors import CartError, PartialCheckoutFailure
from storefront.domain.result import Result
from storefront.services.cart_registry import CartRegistry
from storefront.services.cart_service import CartStateManager
from storefront.services.checkout_service import CheckoutCoordinator

STATUS_BY_KIND = {
    "validation": 400,
    "not_found": 404,
    "partial_checkout": 409,
    "persistence": 503,
}


def get_registry(request: Request) -> CartRegistry:
    return request.app.state.registry


async def get_cart(
    x_session_id: str = Header(..., min_length=1),
    x_user_id: str | None = Header(None),
    registry: CartRegistry = Depends(get_registry),
) -> CartStateManager:
    return await registry.get(x_session_id, x_user_id or None)


def get_coordinator(
    request: Request,
    cart: CartStateManager = Depends(get_cart),
) -> CheckoutCoordinator:
    registry: CartRegistry = request.app.state.registry
    return CheckoutCoordinator(
        cart=cart,
        products=registry.products,
        notifier=request.app.state.notifier,
    )


def error_detail(error: CartError) -> dict:
    detail = {"kind": error.kind, "message": error.message}
    if isinstance(error, PartialCheckoutFailure):
        detail["failed_products"] = error.failed_products
    elif getattr(error, "products", None):
        detail["products"] = error.products
    return detail


def raise_for_result(result: Result) -> None:
    if result.ok:
        return
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(result.error.kind, 400),
        detail=error_detail(result.error),
    )
