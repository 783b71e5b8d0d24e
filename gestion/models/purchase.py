"""Purchase model."""
from sqlalchemy import Column, String, Date, Text, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from gestion.database import Base, IdType
import enum


class PurchaseType(enum.Enum):
    """Purchase type enum."""
    LOCAL = "LOCAL"
    IMPORT = "IMPORT"


class PurchaseStatus(enum.Enum):
    """Purchase status enum."""
    PENDING = "PENDING"
    ORDERED = "ORDERED"
    SHIPPED = "SHIPPED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    COMPLETED = "COMPLETED"


# Items and quantities may change only while the goods have not left the supplier
EDITABLE_STATUSES = (PurchaseStatus.PENDING, PurchaseStatus.ORDERED, PurchaseStatus.SHIPPED)
# Neither editable nor deletable
PROTECTED_STATUSES = (PurchaseStatus.RECEIVED, PurchaseStatus.IN_TRANSIT)


class Purchase(Base):
    """Purchase (compra local o importación)."""

    __tablename__ = 'purchase'

    id = Column(IdType, primary_key=True, autoincrement=True)
    purchase_number = Column(String(32), nullable=False, unique=True)
    supplier_id = Column(IdType, ForeignKey('supplier.id'), nullable=False)
    type = Column(Enum(PurchaseType, name='purchase_type'), nullable=False, default=PurchaseType.LOCAL)
    currency = Column(String(3), nullable=False, default='ARS')
    exchange_rate = Column(Numeric(14, 4), nullable=True)
    exchange_type = Column(String, nullable=True)

    # Overhead costs, each tagged with the currency it was entered in
    freight_cost = Column(Numeric(14, 2), nullable=False, default=0)
    freight_currency = Column(String(3), nullable=False, default='ARS')
    customs_cost = Column(Numeric(14, 2), nullable=False, default=0)
    customs_currency = Column(String(3), nullable=False, default='ARS')
    tax_cost = Column(Numeric(14, 2), nullable=False, default=0)
    tax_currency = Column(String(3), nullable=False, default='ARS')
    insurance_cost = Column(Numeric(14, 2), nullable=False, default=0)
    insurance_currency = Column(String(3), nullable=False, default='ARS')
    other_costs = Column(Numeric(14, 2), nullable=False, default=0)
    other_currency = Column(String(3), nullable=False, default='ARS')

    # Aggregates in local currency (total = subtotal_local + total_costs)
    subtotal_foreign = Column(Numeric(14, 2), nullable=True)
    subtotal_local = Column(Numeric(14, 2), nullable=False, default=0)
    total_costs = Column(Numeric(14, 2), nullable=False, default=0)
    total = Column(Numeric(14, 2), nullable=False, default=0)

    status = Column(Enum(PurchaseStatus, name='purchase_status'), nullable=False, default=PurchaseStatus.PENDING)
    order_date = Column(Date, nullable=False)
    expected_date = Column(Date, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    supplier = relationship('Supplier', back_populates='purchases')
    items = relationship(
        'PurchaseItem',
        back_populates='purchase',
        cascade='all, delete-orphan',
        order_by='PurchaseItem.id'
    )

    @property
    def is_editable(self):
        return self.status in EDITABLE_STATUSES

    @property
    def is_deletable(self):
        return self.status not in PROTECTED_STATUSES

    def __repr__(self):
        return f"<Purchase(id={self.id}, purchase_number='{self.purchase_number}', status={self.status.value})>"
