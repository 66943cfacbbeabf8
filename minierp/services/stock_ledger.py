"""
Stock ledger: keeps products.stock equal to the signed sum of transactions.

Every public operation is one database transaction:
1. Lock the transaction row being changed (revert/replace)
2. Lock the affected product rows FOR UPDATE, in ascending id order
3. Write the transaction row, guarded by its previous values
4. Apply each stock delta with a guarded UPDATE (stock + delta >= 0)
5. Commit, or roll everything back on any error

The guarded writes re-check the invariant against the value current at
write time, so a decision taken on a stale read can never commit. On
PostgreSQL the row locks additionally serialize whole operations per product.
"""
import logging
from collections import defaultdict
from contextlib import contextmanager
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import case, delete, func, text, update
from sqlalchemy.exc import SQLAlchemyError

from minierp.exceptions import (
    ConstraintViolationError, InsufficientStockError, MiniErpError,
    NotFoundError, PersistenceError, ValidationError
)
from minierp.models import Product, Transaction, TransactionType
from minierp.services.cache_service import invalidate_reports

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('product_id', 'quantity', 'type', 'date', 'notes')


# =====================================================
# INPUT NORMALIZATION
# =====================================================

def coerce_type(value) -> TransactionType:
    """Accept a TransactionType or its string value ('purchase' / 'sale')."""
    if isinstance(value, TransactionType):
        return value
    try:
        return TransactionType(str(value).strip().lower())
    except ValueError:
        raise ValidationError('Type must be either "purchase" or "sale"')


def validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError('Quantity must be a positive integer')
    if quantity <= 0:
        raise ValidationError('Quantity must be a positive integer')
    return quantity


def coerce_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError('Date must use the YYYY-MM-DD format')


# =====================================================
# ATOMIC UNIT
# =====================================================

def _lock_timeout_ms() -> int:
    if has_app_context():
        return int(current_app.config.get('LEDGER_LOCK_TIMEOUT_MS', 0) or 0)
    return 0


def _apply_timeouts(session) -> None:
    """Bound lock waits and statements for this unit (PostgreSQL only)."""
    timeout_ms = _lock_timeout_ms()
    if timeout_ms and session.get_bind().dialect.name == 'postgresql':
        session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
        session.execute(text(f"SET LOCAL statement_timeout = {timeout_ms}"))


@contextmanager
def ledger_unit(session, action: str):
    """
    Run the enclosed staging calls as one atomic unit.

    Domain errors roll back and propagate unchanged; storage errors roll back
    and surface as PersistenceError. Nothing is committed on failure.
    """
    try:
        _apply_timeouts(session)
        yield
        session.commit()
    except MiniErpError as e:
        session.rollback()
        logger.warning(f"[LEDGER] {action} rejected: {e.message}")
        raise
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"[LEDGER] {action} failed: {e}", exc_info=True)
        raise PersistenceError() from e
    except Exception:
        session.rollback()
        logger.error(f"[LEDGER] {action} aborted", exc_info=True)
        raise
    invalidate_reports()


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _lock_products(session, product_ids: Iterable[str]) -> Dict[str, Product]:
    """Lock product rows FOR UPDATE (ascending id) and return them fresh."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    products = (
        session.query(Product)
        .filter(Product.id.in_(ids))
        .order_by(Product.id)
        .populate_existing()
        .with_for_update()
        .all()
    )
    return {p.id: p for p in products}


def _lock_transaction(session, transaction_id: str) -> Transaction:
    transaction = (
        session.query(Transaction)
        .filter(Transaction.id == transaction_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if transaction is None:
        raise NotFoundError(f'Transaction {transaction_id} not found')
    return transaction


def _adjust_stock(session, product: Product, delta: int) -> bool:
    """
    Add delta to product.stock unless the result would be negative.

    Returns False when the guard rejected the write; product.stock is
    expired either way so the next read sees the committed value.
    """
    if delta == 0:
        return True
    result = session.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock + delta >= 0)
        .values(stock=Product.stock + delta)
        .execution_options(synchronize_session=False)
    )
    session.expire(product, ['stock'])
    return result.rowcount == 1


def _same_row(transaction: Transaction):
    """WHERE clause matching the row only if nobody changed it meanwhile."""
    return (
        Transaction.id == transaction.id,
        Transaction.product_id == transaction.product_id,
        Transaction.quantity == transaction.quantity,
        Transaction.type == transaction.type,
    )


def _raise_row_changed(session, transaction_id: str):
    still_there = session.query(Transaction.id).filter(Transaction.id == transaction_id).first()
    if still_there is None:
        raise NotFoundError(f'Transaction {transaction_id} not found')
    raise ConstraintViolationError(
        f'Transaction {transaction_id} was modified concurrently, reload and retry'
    )


# =====================================================
# STAGING PRIMITIVES (no commit)
# =====================================================

def apply(session, transaction: Transaction) -> Transaction:
    """
    Stage a new transaction together with its stock effect.

    Raises:
        NotFoundError: product does not exist
        InsufficientStockError: sale larger than current stock
    """
    product = _lock_products(session, [transaction.product_id]).get(transaction.product_id)
    if product is None:
        raise NotFoundError(f'Product {transaction.product_id} not found')

    if not _adjust_stock(session, product, transaction.signed_quantity):
        raise InsufficientStockError(product.name, transaction.quantity, product.stock)

    session.add(transaction)
    session.flush()
    return transaction


def revert(session, transaction: Transaction) -> None:
    """
    Stage the deletion of a persisted transaction and undo its stock effect.

    Reverting a purchase whose units were already sold would leave negative
    stock; that is rejected with ConstraintViolationError.
    """
    product = _lock_products(session, [transaction.product_id]).get(transaction.product_id)
    if product is None:
        raise NotFoundError(f'Product {transaction.product_id} not found')

    result = session.execute(
        delete(Transaction)
        .where(*_same_row(transaction))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        _raise_row_changed(session, transaction.id)

    if not _adjust_stock(session, product, -transaction.signed_quantity):
        raise ConstraintViolationError(
            f'Cannot remove this {transaction.type.value} of {transaction.quantity} units of '
            f'{product.name}: only {product.stock} left in stock',
            payload={'available': product.stock, 'quantity': transaction.quantity}
        )
    session.expunge(transaction)


def replace(session, transaction: Transaction, fields: dict) -> Transaction:
    """
    Stage an edit as revert(old) + apply(new) with the same id.

    The reversal is staged first and the check runs on the net delta per
    product, so shrinking a sale never fails. When the net result would go
    negative: InsufficientStockError if the new sale is what does not fit,
    ConstraintViolationError if the reversal alone already does not fit.
    """
    unknown = set(fields) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f'Unknown transaction fields: {", ".join(sorted(unknown))}')

    old_product_id = transaction.product_id
    old_signed = transaction.signed_quantity

    new_product_id = fields.get('product_id') or old_product_id
    new_quantity = validate_quantity(fields['quantity']) if fields.get('quantity') is not None else transaction.quantity
    new_type = coerce_type(fields['type']) if fields.get('type') is not None else transaction.type
    new_date = coerce_date(fields['date']) if fields.get('date') is not None else transaction.date
    new_notes = fields['notes'] if 'notes' in fields else transaction.notes
    new_signed = new_type.sign * new_quantity

    products = _lock_products(session, [old_product_id, new_product_id])
    if new_product_id not in products:
        raise NotFoundError(f'Product {new_product_id} not found')

    result = session.execute(
        update(Transaction)
        .where(*_same_row(transaction))
        .values(
            product_id=new_product_id,
            quantity=new_quantity,
            type=new_type,
            date=new_date,
            notes=new_notes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        _raise_row_changed(session, transaction.id)

    deltas = defaultdict(int)
    deltas[old_product_id] -= old_signed
    deltas[new_product_id] += new_signed

    for product_id in sorted(deltas):
        product = products[product_id]
        if _adjust_stock(session, product, deltas[product_id]):
            continue

        after_reversal = product.stock - (old_signed if product_id == old_product_id else 0)
        if product_id == new_product_id and new_type is TransactionType.SALE and after_reversal >= 0:
            raise InsufficientStockError(product.name, new_quantity, after_reversal)
        raise ConstraintViolationError(
            f'Cannot change this {transaction.type.value} of {product.name}: '
            f'the units were already consumed (only {product.stock} left in stock)',
            payload={'available': product.stock}
        )

    session.expire(transaction)
    session.flush()
    return transaction


# =====================================================
# PUBLIC OPERATIONS (one atomic unit each)
# =====================================================

def list_transactions(session, product_id: Optional[str] = None, type=None) -> List[Transaction]:
    query = session.query(Transaction)
    if product_id:
        query = query.filter(Transaction.product_id == product_id)
    if type:
        query = query.filter(Transaction.type == coerce_type(type))
    return query.order_by(Transaction.date.desc(), Transaction.created_at.desc()).all()


def get_transaction(session, transaction_id: str) -> Transaction:
    transaction = session.query(Transaction).filter(Transaction.id == transaction_id).first()
    if transaction is None:
        raise NotFoundError(f'Transaction {transaction_id} not found')
    return transaction


def create_transaction(session, product_id: str, quantity: int, type, date,
                       notes: Optional[str] = None) -> Transaction:
    """
    Record a purchase or sale and move the product's stock accordingly.

    Raises:
        ValidationError, NotFoundError, InsufficientStockError, PersistenceError
    """
    transaction = Transaction(
        product_id=product_id,
        quantity=validate_quantity(quantity),
        type=coerce_type(type),
        date=coerce_date(date),
        notes=notes,
    )
    with ledger_unit(session, f'create {transaction.type.value} of {product_id}'):
        apply(session, transaction)

    logger.info(
        f"[LEDGER] {transaction.type.value} {transaction.id}: "
        f"{transaction.signed_quantity:+d} on product {product_id}"
    )
    return transaction


def delete_transaction(session, transaction_id: str) -> Transaction:
    """
    Remove a transaction and reverse its stock effect; returns the removed row.

    Raises:
        NotFoundError, ConstraintViolationError, PersistenceError
    """
    with ledger_unit(session, f'delete {transaction_id}'):
        transaction = _lock_transaction(session, transaction_id)
        revert(session, transaction)

    logger.info(
        f"[LEDGER] deleted {transaction_id}: "
        f"{-transaction.signed_quantity:+d} on product {transaction.product_id}"
    )
    return transaction


def update_transaction(session, transaction_id: str, fields: dict) -> Transaction:
    """
    Edit a transaction; fields left out keep their current value.

    Raises:
        ValidationError, NotFoundError, InsufficientStockError,
        ConstraintViolationError, PersistenceError
    """
    with ledger_unit(session, f'update {transaction_id}'):
        transaction = _lock_transaction(session, transaction_id)
        replace(session, transaction, fields)

    logger.info(f"[LEDGER] updated {transaction_id}: now {transaction.type.value} x{transaction.quantity}")
    return transaction


# =====================================================
# AUDIT
# =====================================================

def _signed_sum():
    return func.coalesce(
        func.sum(
            case(
                (Transaction.type == TransactionType.PURCHASE, Transaction.quantity),
                else_=-Transaction.quantity
            )
        ),
        0
    )


def compute_ledger_stock(session, product_id: str) -> int:
    """Signed sum of a product's transaction history."""
    total = session.query(_signed_sum()).filter(Transaction.product_id == product_id).scalar()
    return int(total or 0)


def audit_stock(session, product_id: Optional[str] = None) -> List[dict]:
    """Products whose stored stock differs from their transaction history."""
    totals = dict(
        session.query(Transaction.product_id, _signed_sum())
        .group_by(Transaction.product_id)
        .all()
    )
    query = session.query(Product)
    if product_id:
        query = query.filter(Product.id == product_id)

    drift = []
    for product in query.order_by(Product.name).all():
        ledger = int(totals.get(product.id, 0) or 0)
        if ledger != product.stock:
            drift.append({
                'product_id': product.id,
                'name': product.name,
                'stored_stock': product.stock,
                'ledger_stock': ledger,
                'difference': product.stock - ledger,
            })
    return drift


def rebuild_stock(session, product_ids: Optional[Iterable[str]] = None) -> int:
    """
    Rewrite stored stock from history for drifted products.

    Products whose history sums below zero cannot be stored and are skipped.
    Returns the number of products repaired.
    """
    wanted = set(product_ids) if product_ids else None
    repaired = 0
    with ledger_unit(session, 'rebuild stock'):
        drift = [d for d in audit_stock(session) if wanted is None or d['product_id'] in wanted]
        products = _lock_products(session, [d['product_id'] for d in drift])
        for item in drift:
            ledger = compute_ledger_stock(session, item['product_id'])
            if ledger < 0:
                logger.error(f"[LEDGER] history of {item['name']} sums to {ledger}, not repaired")
                continue
            products[item['product_id']].stock = ledger
            repaired += 1

    if repaired:
        logger.info(f"[LEDGER] rebuilt stock of {repaired} product(s)")
    return repaired
