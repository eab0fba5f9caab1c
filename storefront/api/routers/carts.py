#storefront/api/routers/carts.py
from fastapi import APIRouter, Depends

from storefront.api.deps import get_cart, raise_for_result
from storefront.domain.result import Result
from storefront.domain.schemas import CartOut, ItemIn, QuantityIn
from storefront.services.cart_service import CartStateManager

router = APIRouter(prefix="/cart", tags=["cart"])


def cart_out(cart: CartStateManager, result: Result | None = None) -> CartOut:
    return CartOut(
        user_id=cart.user_id,
        items=cart.items,
        total_items=cart.total_items,
        total_price=cart.total_price,
        notices=list(result.warnings) if result else [],
    )


@router.get("", response_model=CartOut)
async def get_cart_state(cart: CartStateManager = Depends(get_cart)):
    return cart_out(cart)


@router.post("/items", response_model=CartOut)
async def add_item(payload: ItemIn, cart: CartStateManager = Depends(get_cart)):
    result = await cart.add_to_cart(payload.product_id, payload.quantity)
    raise_for_result(result)
    return cart_out(cart, result)


@router.patch("/items/{item_id}", response_model=CartOut)
async def update_item(item_id: str, payload: QuantityIn, cart: CartStateManager = Depends(get_cart)):
    result = await cart.update_quantity(item_id, payload.quantity)
    raise_for_result(result)
    return cart_out(cart, result)


@router.delete("/items/{item_id}", response_model=CartOut)
async def remove_item(item_id: str, cart: CartStateManager = Depends(get_cart)):
    result = await cart.remove_from_cart(item_id)
    raise_for_result(result)
    return cart_out(cart, result)


@router.delete("", response_model=CartOut)
async def clear_cart(cart: CartStateManager = Depends(get_cart)):
    result = await cart.clear_cart()
    raise_for_result(result)
    return cart_out(cart, result)
