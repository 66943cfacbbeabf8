"""Models package - exports all SQLAlchemy models."""
from minierp.models.supplier import Supplier
from minierp.models.product import Product
from minierp.models.transaction import Transaction, TransactionType

__all__ = ['Supplier', 'Product', 'Transaction', 'TransactionType']
