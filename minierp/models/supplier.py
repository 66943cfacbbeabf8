"""Supplier model."""
from uuid import uuid4

from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from minierp.database import Base


class Supplier(Base):
    """Supplier of one or more products."""

    __tablename__ = 'suppliers'

    id = Column(String(50), primary_key=True, default=lambda: str(uuid4()))
    name = Column(String(255), nullable=False)
    contact = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    products = relationship('Product', back_populates='supplier', passive_deletes='all')

    def __repr__(self):
        return f"<Supplier(id={self.id}, name='{self.name}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'contact': self.contact,
            'email': self.email,
            'phone': self.phone,
            'address': self.address,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }
