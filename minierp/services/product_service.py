"""Product CRUD service. Stock itself is only moved through the stock ledger."""
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import joinedload

from minierp.exceptions import ConstraintViolationError, NotFoundError, PersistenceError, ValidationError
from minierp.models import Product, Supplier, Transaction, TransactionType
from minierp.services import stock_ledger
from minierp.services.cache_service import invalidate_reports

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ('name', 'category', 'price', 'supplier_id')
OPENING_BALANCE_NOTE = 'Opening balance'


def _parse_price(value) -> Decimal:
    try:
        price = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError):
        raise ValidationError('Price must be a number')
    if price < 0:
        raise ValidationError('Price cannot be negative')
    return price


def _require_supplier(session, supplier_id: str) -> Supplier:
    supplier = session.query(Supplier).filter(Supplier.id == supplier_id).first()
    if supplier is None:
        raise NotFoundError(f'Supplier {supplier_id} not found')
    return supplier


def list_products(session, search_query: Optional[str] = None) -> List[Product]:
    """List products ordered by name, optionally filtered by name/category."""
    query = session.query(Product).options(joinedload(Product.supplier))

    if search_query:
        term = f'%{search_query.lower()}%'
        query = query.filter(or_(
            func.lower(Product.name).like(term),
            func.lower(Product.category).like(term),
        ))

    return query.order_by(Product.name).all()


def list_low_stock(session, threshold: int) -> List[Product]:
    """Products with stock strictly below threshold, emptiest first."""
    return (
        session.query(Product)
        .options(joinedload(Product.supplier))
        .filter(Product.stock < threshold)
        .order_by(Product.stock.asc(), Product.name)
        .all()
    )


def get_product(session, product_id: str) -> Product:
    product = session.query(Product).filter(Product.id == product_id).first()
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')
    return product


def create_product(session, data: dict) -> Product:
    """
    Create a product with zero stock.

    An initial ``stock`` is booked as an opening purchase in the same atomic
    unit, so the stored stock always matches the transaction history.
    """
    missing = [f for f in ('name', 'category', 'price', 'supplier_id') if data.get(f) in (None, '')]
    if missing:
        raise ValidationError(f'Missing required fields: {", ".join(missing)}')

    initial_stock = data.get('stock') or 0
    if isinstance(initial_stock, bool) or not isinstance(initial_stock, int) or initial_stock < 0:
        raise ValidationError('Initial stock must be a non-negative integer')

    product = Product(
        name=data['name'],
        category=data['category'],
        price=_parse_price(data['price']),
        stock=0,
        supplier_id=data['supplier_id'],
    )

    with stock_ledger.ledger_unit(session, f'create product {product.name}'):
        _require_supplier(session, product.supplier_id)
        session.add(product)
        session.flush()
        if initial_stock:
            stock_ledger.apply(session, Transaction(
                product_id=product.id,
                quantity=initial_stock,
                type=TransactionType.PURCHASE,
                date=stock_ledger.coerce_date(data.get('date') or date.today()),
                notes=OPENING_BALANCE_NOTE,
            ))

    logger.info(f"Product created: {product.id} ({product.name}), opening stock {initial_stock}")
    return product


def update_product(session, product_id: str, data: dict) -> Product:
    """Partial update of descriptive fields; stock is rejected."""
    if 'stock' in data:
        raise ValidationError('Stock is maintained by transactions and cannot be edited directly')

    product = get_product(session, product_id)

    if data.get('supplier_id') and data['supplier_id'] != product.supplier_id:
        _require_supplier(session, data['supplier_id'])

    for field in PRODUCT_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = _parse_price(data[field]) if field == 'price' else data[field]
        if field in ('name', 'category') and not value:
            raise ValidationError(f'{field.capitalize()} cannot be empty')
        setattr(product, field, value)

    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error updating product {product_id}: {e}", exc_info=True)
        raise PersistenceError() from e

    invalidate_reports()
    return product


def delete_product(session, product_id: str) -> None:
    """Delete a product; blocked while transactions reference it."""
    product = get_product(session, product_id)

    transaction_count = session.query(func.count(Transaction.id)).filter(
        Transaction.product_id == product_id
    ).scalar()
    if transaction_count:
        raise ConstraintViolationError(
            f'Cannot delete product "{product.name}" with existing transactions',
            payload={'transaction_count': transaction_count}
        )

    try:
        session.delete(product)
        session.commit()
    except IntegrityError as e:
        session.rollback()
        raise ConstraintViolationError(
            f'Cannot delete product "{product.name}" with existing transactions'
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error deleting product {product_id}: {e}", exc_info=True)
        raise PersistenceError() from e

    invalidate_reports()
    logger.info(f"Product deleted: {product_id}")
