"""Purchase Item model."""
from sqlalchemy import Column, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from gestion.database import Base, IdType


class PurchaseItem(Base):
    """Purchase Item (detalle de compra)."""

    __tablename__ = 'purchase_item'

    id = Column(IdType, primary_key=True, autoincrement=True)
    purchase_id = Column(IdType, ForeignKey('purchase.id', ondelete='CASCADE'), nullable=False, index=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    unit_price_foreign = Column(Numeric(14, 4), nullable=True)
    unit_price_local = Column(Numeric(14, 2), nullable=False)
    # Computed by the cost distribution engine, stored rounded to cents
    distributed_cost = Column(Numeric(14, 2), nullable=False, default=0)
    final_unit_cost = Column(Numeric(14, 2), nullable=False, default=0)
    total_cost = Column(Numeric(14, 2), nullable=False, default=0)
    # Optional sale prices copied onto the product when the purchase completes
    wholesale_price = Column(Numeric(12, 2), nullable=True)
    retail_price = Column(Numeric(12, 2), nullable=True)

    # Relationships
    purchase = relationship('Purchase', back_populates='items')
    product = relationship('Product')

    def __repr__(self):
        return f"<PurchaseItem(id={self.id}, product_id={self.product_id}, quantity={self.quantity})>"
