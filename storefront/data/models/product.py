# storefront/data/models/product.py
import uuid

from sqlalchemy import Column, String, Integer, Numeric, JSON, CheckConstraint

from storefront.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    images = Column(JSON, nullable=False, default=list)

    __table_args__ = (CheckConstraint("stock >= 0", name="ck_product_stock"),)
