# storefront/data/seed.py
import asyncio

from sqlalchemy import select

from storefront.data.database import SessionLocal, init_db
from storefront.data.models.product import ProductModel
from storefront.repos.product_repo import ProductRepo
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

DEMO_PRODUCTS = [
    {"name": "Keyboard", "price": "199.99", "stock": 10, "images": []},
    {"name": "Mouse", "price": "49.50", "stock": 25, "images": []},
    {"name": "Monitor", "price": "899.00", "stock": 3, "images": []},
]


async def seed(session_factory=None) -> int:
    session_factory = session_factory or SessionLocal

    # not forcing: only seed if empty
    async with session_factory() as db:
        if (await db.execute(select(ProductModel.id).limit(1))).first():
            return 0

    repo = ProductRepo(session_factory)
    for product in DEMO_PRODUCTS:
        await repo.add_product(**product)

    logger.info(f"Seeded {len(DEMO_PRODUCTS)} demo products")
    return len(DEMO_PRODUCTS)


async def main():
    await init_db()
    await seed()


if __name__ == "__main__":
    asyncio.run(main())
