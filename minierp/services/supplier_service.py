"""Supplier CRUD service."""
import logging
from typing import List, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from minierp.exceptions import ConstraintViolationError, NotFoundError, PersistenceError, ValidationError
from minierp.models import Product, Supplier
from minierp.services.cache_service import invalidate_reports

logger = logging.getLogger(__name__)

SUPPLIER_FIELDS = ('name', 'contact', 'email', 'phone', 'address')


def list_suppliers(session, search_query: Optional[str] = None) -> List[Supplier]:
    """List suppliers ordered by name, optionally filtered by a search term."""
    query = session.query(Supplier)

    if search_query:
        term = f'%{search_query.lower()}%'
        query = query.filter(or_(
            func.lower(Supplier.name).like(term),
            func.lower(Supplier.contact).like(term),
            func.lower(Supplier.email).like(term),
        ))

    return query.order_by(Supplier.name).all()


def get_supplier(session, supplier_id: str) -> Supplier:
    supplier = session.query(Supplier).filter(Supplier.id == supplier_id).first()
    if supplier is None:
        raise NotFoundError(f'Supplier {supplier_id} not found')
    return supplier


def create_supplier(session, data: dict) -> Supplier:
    if not data.get('name') or not data.get('contact'):
        raise ValidationError('Name and contact are required')

    supplier = Supplier(**{field: data.get(field) for field in SUPPLIER_FIELDS})
    try:
        session.add(supplier)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error creating supplier: {e}", exc_info=True)
        raise PersistenceError() from e

    invalidate_reports()
    logger.info(f"Supplier created: {supplier.id} ({supplier.name})")
    return supplier


def update_supplier(session, supplier_id: str, data: dict) -> Supplier:
    """Partial update: only keys present in data are written."""
    supplier = get_supplier(session, supplier_id)

    for field in SUPPLIER_FIELDS:
        if field in data:
            if field in ('name', 'contact') and not data[field]:
                raise ValidationError(f'{field.capitalize()} cannot be empty')
            setattr(supplier, field, data[field])

    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error updating supplier {supplier_id}: {e}", exc_info=True)
        raise PersistenceError() from e

    invalidate_reports()
    return supplier


def delete_supplier(session, supplier_id: str) -> None:
    """Delete a supplier; blocked while any product references it."""
    supplier = get_supplier(session, supplier_id)

    product_count = session.query(func.count(Product.id)).filter(
        Product.supplier_id == supplier_id
    ).scalar()
    if product_count:
        raise ConstraintViolationError(
            f'Cannot delete supplier "{supplier.name}" with existing products',
            payload={'product_count': product_count}
        )

    try:
        session.delete(supplier)
        session.commit()
    except IntegrityError as e:
        # A product was attached between the check and the delete
        session.rollback()
        raise ConstraintViolationError(
            f'Cannot delete supplier "{supplier.name}" with existing products'
        ) from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Error deleting supplier {supplier_id}: {e}", exc_info=True)
        raise PersistenceError() from e

    invalidate_reports()
    logger.info(f"Supplier deleted: {supplier_id}")
