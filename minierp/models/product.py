"""Product model."""
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from minierp.database import Base


class Product(Base):
    """
    Product with a materialized stock level.

    ``stock`` is owned by the stock ledger: it always equals the signed sum
    of the product's transactions and is never written by CRUD code.
    """

    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
        CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
    )

    id = Column(String(50), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False, default='')
    price = Column(Numeric(10, 2), nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0, server_default='0')
    supplier_id = Column(String(50), ForeignKey('suppliers.id', ondelete='RESTRICT'), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    supplier = relationship('Supplier', back_populates='products')
    transactions = relationship('Transaction', back_populates='product', passive_deletes='all')

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', stock={self.stock})>"

    @property
    def inventory_value(self):
        """Price times units on hand."""
        return (Decimal(self.price or 0) * (self.stock or 0)).quantize(Decimal('0.01'))

    def is_low_stock(self, threshold):
        return (self.stock or 0) < threshold

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'category': self.category,
            'price': float(self.price) if self.price is not None else None,
            'stock': self.stock,
            'supplier_id': self.supplier_id,
            'supplier_name': self.supplier.name if self.supplier else None,
            'inventory_value': float(self.inventory_value),
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
