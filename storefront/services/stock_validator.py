# storefront/services/stock_validator.py
from storefront.domain.errors import ValidationError
from storefront.domain.schemas import ProductSnapshot


def stock_message(stock: int) -> str:
    return f"Only {stock} units available in stock."


def is_within_stock(requested: int, stock: int) -> bool:
    return 1 <= requested <= stock


def ensure_within_stock(requested: int, product: ProductSnapshot) -> int:
    """Zatwierdza ilosc albo rzuca ValidationError."""
    if requested <= 0:
        raise ValidationError("Quantity must be greater than 0", products=[product.name])
    if not is_within_stock(requested, product.stock):
        raise ValidationError(stock_message(product.stock), products=[product.name])
    return requested


def clamp_to_stock(requested: int, product: ProductSnapshot) -> tuple[int, str | None]:
    """
    Przycina ilosc do stanu magazynowego.
    Zwraca (ilosc, ostrzezenie albo None). Brak stocku -> ValidationError.
    """
    if product.stock <= 0:
        raise ValidationError(f"{product.name} is out of stock.", products=[product.name])
    if requested > product.stock:
        return product.stock, stock_message(product.stock)
    return requested, None
