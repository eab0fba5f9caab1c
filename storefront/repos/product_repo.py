# storefront/repos/product_repo.py
from decimal import Decimal
from typing import Iterable

from pydantic import ValidationError as SchemaError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.data.models.product import ProductModel
from storefront.domain.errors import PersistenceError
from storefront.domain.schemas import ProductSnapshot
from storefront.utils.logging import get_logger
from storefront.utils.retry import db_guard

logger = get_logger(__name__)


def to_snapshot(row: ProductModel) -> ProductSnapshot:
    return ProductSnapshot(
        id=row.id,
        name=row.name,
        price=row.price,
        stock=row.stock,
        images=list(row.images or []),
    )


class ProductRepo:
    """
    Odczyt produktow + jedyna powierzchnia mutacji stocku (update_product).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @db_guard("fetch product")
    async def get_product(self, product_id: str) -> ProductSnapshot | None:
        async with self.session_factory() as db:
            row = await db.get(ProductModel, product_id)
            if row is None:
                return None
            try:
                return to_snapshot(row)
            except SchemaError as e:
                logger.warning(f"Malformed product row {product_id}: {e}")
                raise PersistenceError(f"Product {product_id} is malformed") from e

    @db_guard("fetch products")
    async def get_products(self, product_ids: Iterable[str]) -> dict[str, ProductSnapshot]:
        ids = list(set(product_ids))
        if not ids:
            return {}

        async with self.session_factory() as db:
            rows = (
                await db.execute(select(ProductModel).where(ProductModel.id.in_(ids)))
            ).scalars().all()

        products = {}
        for row in rows:
            try:
                products[row.id] = to_snapshot(row)
            except SchemaError as e:
                logger.warning(f"Skipping malformed product row {row.id}: {e}")
        return products

    @db_guard("update product")
    async def update_product(
        self,
        product_id: str,
        *,
        stock: int,
        expected_stock: int | None = None,
    ) -> ProductSnapshot | None:
        """
        Czesciowy update stocku. Zwraca None gdy zaden wiersz nie zostal zmieniony.

        expected_stock -> compare-and-swap:
        update products set stock = :stock where id = :id and stock = :expected
        """
        if stock < 0:
            raise ValueError("stock cannot be negative")

        stmt = update(ProductModel).where(ProductModel.id == product_id)
        if expected_stock is not None:
            stmt = stmt.where(ProductModel.stock == expected_stock)
        stmt = stmt.values(stock=stock)

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            if result.rowcount == 0:
                await db.rollback()
                logger.warning(
                    f"Stock update for product {product_id} matched no rows "
                    f"(expected_stock={expected_stock})"
                )
                return None
            await db.commit()
            row = await db.get(ProductModel, product_id, populate_existing=True)

        logger.info(f"Product {product_id} stock set to {stock}")
        return to_snapshot(row)

    @db_guard("add product")
    async def add_product(
        self,
        name: str,
        price: Decimal | float | str,
        stock: int,
        images: list[str] | None = None,
        product_id: str | None = None,
    ) -> ProductSnapshot:
        row = ProductModel(
            name=name,
            price=Decimal(str(price)),
            stock=stock,
            images=images or [],
        )
        if product_id:
            row.id = product_id

        async with self.session_factory() as db:
            db.add(row)
            await db.commit()
            await db.refresh(row)

        return to_snapshot(row)
