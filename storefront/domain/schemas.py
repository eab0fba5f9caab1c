# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import List
from decimal import Decimal


class ProductSnapshot(BaseModel):
    """Kopia wiersza produktu z chwili odczytu - koszyk jej nie posiada."""

    id: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(..., ge=0)
    stock: int = Field(..., ge=0)
    images: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, from_attributes=True)


class CartLine(BaseModel):
    """Jedna pozycja koszyka dla jednego produktu."""

    id: str = Field(..., min_length=1)
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    product: ProductSnapshot

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def product_matches(self) -> "CartLine":
        if self.product.id != self.product_id:
            raise ValueError("product snapshot does not match product_id")
        return self

    @property
    def subtotal(self) -> Decimal:
        return self.product.price * self.quantity


class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: str = Field(..., min_length=1, description="ID produktu")
    quantity: int = Field(1, gt=0, description="Ilość produktu (musi być > 0)")


class QuantityIn(BaseModel):
    """Schema dla zmiany ilosci. <= 0 usuwa pozycje."""

    quantity: int


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    user_id: str | None = None
    items: List[CartLine]
    total_items: int
    total_price: Decimal
    notices: List[str] = Field(default_factory=list)


class CheckoutOut(BaseModel):
    """Schema dla wyniku checkoutu (response)."""

    status: str
    items: List[CartLine]
    total: Decimal
    notices: List[str] = Field(default_factory=list)
