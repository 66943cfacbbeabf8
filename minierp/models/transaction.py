"""Inventory transaction model."""
import enum
from uuid import uuid4

from sqlalchemy import Column, String, Integer, Date, DateTime, Text, Enum, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from minierp.database import Base


class TransactionType(enum.Enum):
    """Transaction type enum."""
    PURCHASE = "purchase"
    SALE = "sale"

    @property
    def sign(self):
        """+1 for inbound stock, -1 for outbound."""
        return 1 if self is TransactionType.PURCHASE else -1


class Transaction(Base):
    """Purchase or sale of a product; the source of truth for stock."""

    __tablename__ = 'transactions'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_transactions_quantity_positive'),
    )

    id = Column(String(50), primary_key=True, default=lambda: str(uuid4()))
    product_id = Column(String(50), ForeignKey('products.id', ondelete='RESTRICT'), nullable=False, index=True)
    quantity = Column(Integer, nullable=False)
    type = Column(
        Enum(TransactionType, name='transaction_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    date = Column(Date, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    product = relationship('Product', back_populates='transactions')

    def __repr__(self):
        return f"<Transaction(id={self.id}, type={self.type.value}, quantity={self.quantity})>"

    @property
    def signed_quantity(self):
        """Stock effect of this transaction."""
        return self.type.sign * self.quantity

    def to_dict(self):
        product = self.product
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': product.name if product else None,
            'product_price': float(product.price) if product and product.price is not None else None,
            'quantity': self.quantity,
            'type': self.type.value,
            'date': self.date.isoformat() if self.date else None,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
