# storefront/domain/result.py
from dataclasses import dataclass
from typing import Generic, TypeVar

from storefront.domain.errors import CartError

T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """
    Wynik operacji na koszyku. Mutatory nie rzucaja wyjatkow domenowych,
    tylko zwracaja Result - warstwa UI / API decyduje co z tym zrobic.
    """

    value: T | None = None
    error: CartError | None = None
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None, warnings=()) -> "Result[T]":
        return cls(value=value, warnings=tuple(warnings))

    @classmethod
    def failure(cls, error: CartError) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value
