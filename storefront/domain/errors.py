# storefront/domain/errors.py
from typing import Iterable


class CartError(Exception):
    """Bazowy blad domeny koszyka. Kazdy blad ma `kind` mapowany potem na notyfikacje / HTTP."""

    kind = "cart_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CartError):
    """Ilosc przekracza stan magazynowy albo checkout wykryl braki."""

    kind = "validation"

    def __init__(self, message: str, products: Iterable[str] = ()):
        super().__init__(message)
        self.products = list(products)


class NotFoundError(CartError):
    kind = "not_found"


class PersistenceError(CartError):
    """Zapis / odczyt z backendu (redis, baza) sie nie udal."""

    kind = "persistence"


class PartialCheckoutFailure(CartError):
    """Czesc dekrementacji stocku sie nie udala. Bez rollbacku, koszyk nie jest czyszczony."""

    kind = "partial_checkout"

    def __init__(self, failed_products: Iterable[str]):
        self.failed_products = list(failed_products)
        super().__init__(
            "Some products could not be updated: " + ", ".join(self.failed_products)
        )
