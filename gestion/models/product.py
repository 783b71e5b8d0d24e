"""Product model."""
from sqlalchemy import Column, String, Boolean, Integer, Numeric, DateTime
from sqlalchemy.sql import func
from gestion.database import Base, IdType


class Product(Base):
    """Product model."""

    __tablename__ = 'product'

    id = Column(IdType, primary_key=True, autoincrement=True)
    sku = Column(String, nullable=True, unique=True)
    name = Column(String, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    # Landed cost derived from completed purchases (see product_cost_service)
    cost = Column(Numeric(12, 2), nullable=False, default=0, server_default='0.00')
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    wholesale_price = Column(Numeric(12, 2), nullable=True)
    retail_price = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"
