"""Stock Movement model."""
from sqlalchemy import Column, Integer, String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestion.database import Base, IdType
import enum


class StockMovementType(enum.Enum):
    """Stock movement direction."""
    IN = "IN"
    OUT = "OUT"


class StockMovement(Base):
    """
    Stock Movement (movimiento de stock).

    Append-only ledger: rows are inserted by the purchase services and never
    updated or deleted.
    """

    __tablename__ = 'stock_movement'

    id = Column(IdType, primary_key=True, autoincrement=True)
    product_id = Column(IdType, ForeignKey('product.id'), nullable=False, index=True)
    type = Column(Enum(StockMovementType, name='stock_movement_type'), nullable=False)
    quantity = Column(Integer, nullable=False)
    reason = Column(String, nullable=False)
    reference = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return f"<StockMovement(id={self.id}, type={self.type.value}, product_id={self.product_id}, quantity={self.quantity})>"
