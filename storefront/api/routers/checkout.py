# storefront/api/routers/checkout.py
from fastapi import APIRouter, Depends

from storefront.api.deps import get_coordinator, raise_for_result
from storefront.domain.schemas import CheckoutOut
from storefront.services.checkout_service import CheckoutCoordinator

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("", response_model=CheckoutOut)
async def checkout(coordinator: CheckoutCoordinator = Depends(get_coordinator)):
    """
    Dekrementuje stock dla wszystkich pozycji i czysci koszyk.
    Czesciowa porazka -> 409 z lista produktow, koszyk zostaje.
    """
    result = await coordinator.checkout()
    raise_for_result(result)

    receipt = result.value
    return CheckoutOut(
        status=receipt.status,
        items=list(receipt.items),
        total=receipt.total,
        notices=list(receipt.notices),
    )
