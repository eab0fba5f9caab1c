# storefront/repos/cart_repo.py
from typing import Iterable

from pydantic import ValidationError as SchemaError
from sqlalchemy import select, delete, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import joinedload

from storefront.data.models.cart_item import CartItemModel
from storefront.data.models.product import ProductModel
from storefront.domain.errors import PersistenceError
from storefront.domain.schemas import CartLine
from storefront.repos.product_repo import to_snapshot
from storefront.utils.logging import get_logger
from storefront.utils.retry import db_guard

logger = get_logger(__name__)


def to_line(row: CartItemModel) -> CartLine:
    if row.product is None:
        raise ValueError(f"cart item {row.id} has no product")
    return CartLine(
        id=row.id,
        product_id=row.product_id,
        quantity=row.quantity,
        product=to_snapshot(row.product),
    )


@db_guard("prune cart lines")
async def prune_invalid_lines(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str | None = None,
) -> int:
    """
    Usuwa wiersze koszyka bez produktu albo z iloscia < 1.
    user_id=None -> wszystkie koszyki (task celery).
    """
    query = (
        select(CartItemModel.id)
        .outerjoin(ProductModel, ProductModel.id == CartItemModel.product_id)
        .where(or_(ProductModel.id.is_(None), CartItemModel.quantity < 1))
    )
    if user_id is not None:
        query = query.where(CartItemModel.user_id == user_id)

    async with session_factory() as db:
        invalid_ids = (await db.execute(query)).scalars().all()
        if not invalid_ids:
            return 0

        await db.execute(delete(CartItemModel).where(CartItemModel.id.in_(invalid_ids)))
        await db.commit()

    logger.info(f"Pruned {len(invalid_ids)} invalid cart lines (user={user_id})")
    return len(invalid_ids)


class RemoteCartRepository:
    """
    Koszyk zalogowanego uzytkownika w tabeli cart_items.
    Kazdy odczyt robi join z products zeby odswiezyc snapshot produktu.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], user_id: str):
        if not user_id:
            raise ValueError("user_id is required")
        self.session_factory = session_factory
        self.user_id = user_id

    def _lines_query(self):
        return (
            select(CartItemModel)
            .options(joinedload(CartItemModel.product))
            .where(CartItemModel.user_id == self.user_id)
        )

    async def _find_by_product(self, db: AsyncSession, product_id: str) -> CartItemModel | None:
        return (
            await db.execute(
                select(CartItemModel).where(
                    CartItemModel.user_id == self.user_id,
                    CartItemModel.product_id == product_id,
                )
            )
        ).scalar_one_or_none()

    async def _fetch_line(self, db: AsyncSession, item_id: str) -> CartLine:
        row = (
            await db.execute(
                self._lines_query()
                .where(CartItemModel.id == item_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()

        if row is None:
            raise PersistenceError(f"Cart item {item_id} disappeared after write")
        try:
            return to_line(row)
        except (SchemaError, ValueError) as e:
            logger.warning(f"Malformed cart row {item_id}: {e}")
            raise PersistenceError(f"Cart item {item_id} is malformed") from e

    @db_guard("load cart")
    async def load(self) -> list[CartLine]:
        async with self.session_factory() as db:
            rows = (
                await db.execute(
                    self._lines_query().order_by(CartItemModel.created_at, CartItemModel.id)
                )
            ).scalars().all()

        lines = []
        for row in rows:
            try:
                lines.append(to_line(row))
            except (SchemaError, ValueError) as e:
                logger.warning(f"Skipping malformed cart row {row.id}: {e}")
        return lines

    @db_guard("save cart line")
    async def upsert(self, line: CartLine, increment: bool = False) -> CartLine:
        """
        Zapis ilosci dla (user_id, product_id).
        increment=False -> ilosc absolutna, increment=True -> dodanie do istniejacego wiersza
        (np. wiersz utworzony w innej sesji tego samego uzytkownika).
        Wyscig z rownoleglym insertem konczy sie na unique constraint -
        wtedy czytamy zwycieski wiersz i zapisujemy do niego (jedna pozycja, nie duplikat).
        """
        async with self.session_factory() as db:
            row = await self._find_by_product(db, line.product_id)

            if row is None:
                row = CartItemModel(
                    user_id=self.user_id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                )
                db.add(row)
                try:
                    await db.commit()
                except IntegrityError:
                    await db.rollback()
                    logger.info(
                        f"Concurrent insert for user {self.user_id} product {line.product_id}, "
                        f"merging into existing line"
                    )
                    row = await self._find_by_product(db, line.product_id)
                    if row is None:
                        raise
                    row.quantity = row.quantity + line.quantity if increment else line.quantity
                    await db.commit()
            else:
                row.quantity = row.quantity + line.quantity if increment else line.quantity
                await db.commit()

            saved = await self._fetch_line(db, row.id)

        logger.info(f"Cart line {saved.id} for user {self.user_id} saved with quantity {saved.quantity}")
        return saved

    @db_guard("delete cart line")
    async def delete(self, line_id: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                delete(CartItemModel).where(
                    CartItemModel.id == line_id,
                    CartItemModel.user_id == self.user_id,
                )
            )
            await db.commit()

        return result.rowcount > 0

    @db_guard("clear cart")
    async def clear(self) -> None:
        async with self.session_factory() as db:
            await db.execute(delete(CartItemModel).where(CartItemModel.user_id == self.user_id))
            await db.commit()

        logger.info(f"Cart of user {self.user_id} cleared")

    async def save(self, lines: Iterable[CartLine]) -> list[CartLine]:
        """Zastepuje caly koszyk uzytkownika podanym zestawem pozycji."""
        lines = list(lines)
        keep = {line.product_id for line in lines}

        await self._delete_except(keep)
        return [await self.upsert(line) for line in lines]

    @db_guard("replace cart")
    async def _delete_except(self, product_ids: set[str]) -> None:
        stmt = delete(CartItemModel).where(CartItemModel.user_id == self.user_id)
        if product_ids:
            stmt = stmt.where(CartItemModel.product_id.not_in(product_ids))

        async with self.session_factory() as db:
            await db.execute(stmt)
            await db.commit()

    async def prune_invalid(self) -> int:
        return await prune_invalid_lines(self.session_factory, self.user_id)
