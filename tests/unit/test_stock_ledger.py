"""
Unit tests for the stock ledger.
Stock must always equal purchases minus sales and never go negative.
"""

import pytest
from datetime import date
from sqlalchemy import func, update
from sqlalchemy.exc import OperationalError

from minierp.exceptions import (
    ConstraintViolationError, InsufficientStockError, NotFoundError,
    PersistenceError, ValidationError
)
from minierp.models import Product, Transaction, TransactionType
from minierp.services import stock_ledger

DAY = date(2024, 2, 1)


def _stock(session, product_id):
    return session.query(Product.stock).filter(Product.id == product_id).scalar()


def _count(session, product_id=None):
    query = session.query(func.count(Transaction.id))
    if product_id:
        query = query.filter(Transaction.product_id == product_id)
    return query.scalar()


def _buy(session, product_id, quantity):
    return stock_ledger.create_transaction(session, product_id, quantity, 'purchase', DAY)


def _sell(session, product_id, quantity):
    return stock_ledger.create_transaction(session, product_id, quantity, 'sale', DAY)


class TestCreateTransaction:
    """Tests for recording purchases and sales."""

    def test_purchase_increases_stock(self, session, make_product):
        product = make_product(stock=0)
        transaction = _buy(session, product.id, 20)

        assert _stock(session, product.id) == 20
        assert transaction.type is TransactionType.PURCHASE
        assert transaction.quantity == 20
        assert transaction.date == DAY

    def test_sale_decreases_stock(self, session, product):
        _sell(session, product.id, 4)
        assert _stock(session, product.id) == 6

    def test_sale_of_entire_stock(self, session, product):
        _sell(session, product.id, 10)
        assert _stock(session, product.id) == 0

    def test_sale_exceeding_stock_changes_nothing(self, session, product):
        before = _count(session)

        with pytest.raises(InsufficientStockError) as exc_info:
            _sell(session, product.id, 11)

        assert exc_info.value.required == 11
        assert exc_info.value.available == 10
        assert exc_info.value.status_code == 409
        assert _stock(session, product.id) == 10
        assert _count(session) == before

    def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            _buy(session, 'does-not-exist', 5)
        assert _count(session) == 0

    @pytest.mark.parametrize('quantity', [0, -3, 1.5, '4', True, None])
    def test_quantity_must_be_positive_integer(self, session, product, quantity):
        with pytest.raises(ValidationError):
            stock_ledger.create_transaction(session, product.id, quantity, 'sale', DAY)
        assert _stock(session, product.id) == 10

    def test_type_must_be_purchase_or_sale(self, session, product):
        with pytest.raises(ValidationError):
            stock_ledger.create_transaction(session, product.id, 1, 'refund', DAY)

    def test_type_accepts_enum_and_any_case(self, session, product):
        stock_ledger.create_transaction(session, product.id, 1, TransactionType.SALE, DAY)
        stock_ledger.create_transaction(session, product.id, 2, 'PURCHASE', DAY)
        assert _stock(session, product.id) == 11

    def test_date_accepts_iso_strings(self, session, product):
        transaction = stock_ledger.create_transaction(
            session, product.id, 1, 'purchase', '2024-03-05T10:00:00Z'
        )
        assert transaction.date == date(2024, 3, 5)

    def test_invalid_date(self, session, product):
        with pytest.raises(ValidationError):
            stock_ledger.create_transaction(session, product.id, 1, 'purchase', '05/03/2024')

    def test_storage_failure_rolls_back(self, session, product, monkeypatch):
        def failing_commit():
            raise OperationalError('COMMIT', {}, Exception('disk I/O error'))

        monkeypatch.setattr(session, 'commit', failing_commit)
        with pytest.raises(PersistenceError) as exc_info:
            _sell(session, product.id, 3)
        monkeypatch.undo()

        assert exc_info.value.status_code == 500
        assert 'disk' not in exc_info.value.message
        assert _stock(session, product.id) == 10
        assert _count(session, product.id) == 1

    def test_unexpected_error_discards_staged_writes(self, session, product):
        with pytest.raises(RuntimeError):
            with stock_ledger.ledger_unit(session, 'interrupted sale'):
                stock_ledger.apply(session, Transaction(
                    product_id=product.id, quantity=4, type=TransactionType.SALE, date=DAY,
                ))
                raise RuntimeError('worker interrupted')

        # a later commit by the caller must not persist half a unit
        session.commit()

        assert _stock(session, product.id) == 10
        assert _count(session, product.id) == 1


class TestDeleteTransaction:
    """Tests for removing transactions."""

    def test_delete_sale_restores_stock(self, session, product):
        sale = _sell(session, product.id, 4)
        sale_id = sale.id

        removed = stock_ledger.delete_transaction(session, sale_id)

        assert removed.id == sale_id
        assert removed.quantity == 4
        assert _stock(session, product.id) == 10
        assert session.query(Transaction).filter(Transaction.id == sale_id).first() is None

    def test_delete_purchase_removes_stock(self, session, product):
        purchase = _buy(session, product.id, 5)
        stock_ledger.delete_transaction(session, purchase.id)
        assert _stock(session, product.id) == 10

    def test_delete_unknown(self, session):
        with pytest.raises(NotFoundError):
            stock_ledger.delete_transaction(session, 'does-not-exist')

    def test_delete_twice(self, session, product):
        sale = _sell(session, product.id, 1)
        sale_id = sale.id
        stock_ledger.delete_transaction(session, sale_id)

        with pytest.raises(NotFoundError):
            stock_ledger.delete_transaction(session, sale_id)
        assert _stock(session, product.id) == 10

    def test_delete_consumed_purchase_is_rejected(self, session, make_product):
        product = make_product(stock=0)
        purchase = _buy(session, product.id, 20)
        purchase_id = purchase.id
        _sell(session, product.id, 5)

        with pytest.raises(ConstraintViolationError) as exc_info:
            stock_ledger.delete_transaction(session, purchase_id)

        assert exc_info.value.status_code == 409
        assert _stock(session, product.id) == 15
        assert session.query(Transaction).filter(Transaction.id == purchase_id).first() is not None


class TestUpdateTransaction:
    """Tests for editing transactions (revert + apply as one unit)."""

    def test_shrinking_a_sale_with_no_stock_left(self, session, make_product):
        product = make_product(stock=8)
        sale = _sell(session, product.id, 8)
        assert _stock(session, product.id) == 0

        updated = stock_ledger.update_transaction(session, sale.id, {'quantity': 5})

        assert updated.quantity == 5
        assert _stock(session, product.id) == 3

    def test_growing_a_sale_within_stock(self, session, product):
        sale = _sell(session, product.id, 4)
        stock_ledger.update_transaction(session, sale.id, {'quantity': 10})
        assert _stock(session, product.id) == 0

    def test_growing_a_sale_beyond_stock_keeps_original(self, session, product):
        sale = _sell(session, product.id, 4)
        sale_id = sale.id

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_ledger.update_transaction(session, sale_id, {'quantity': 11})

        # Available is the stock once the old sale is reverted
        assert exc_info.value.available == 10
        assert _stock(session, product.id) == 6
        original = session.query(Transaction).filter(Transaction.id == sale_id).one()
        assert original.quantity == 4

    def test_sale_to_purchase(self, session, product):
        sale = _sell(session, product.id, 4)
        stock_ledger.update_transaction(session, sale.id, {'type': 'purchase'})
        assert _stock(session, product.id) == 14

    def test_purchase_to_sale(self, session, product):
        purchase = _buy(session, product.id, 5)
        stock_ledger.update_transaction(session, purchase.id, {'type': 'sale', 'quantity': 3})
        assert _stock(session, product.id) == 7

    def test_move_to_another_product(self, session, make_product):
        first = make_product(name='First', stock=10)
        second = make_product(name='Second', stock=10)
        sale = _sell(session, first.id, 4)

        updated = stock_ledger.update_transaction(session, sale.id, {'product_id': second.id})

        assert updated.product_id == second.id
        assert _stock(session, first.id) == 10
        assert _stock(session, second.id) == 6

    def test_move_to_product_without_stock(self, session, make_product):
        first = make_product(name='First', stock=10)
        empty = make_product(name='Empty', stock=0)
        sale = _sell(session, first.id, 4)

        with pytest.raises(InsufficientStockError):
            stock_ledger.update_transaction(session, sale.id, {'product_id': empty.id})

        assert _stock(session, first.id) == 6
        assert _stock(session, empty.id) == 0

    def test_reducing_a_consumed_purchase_is_rejected(self, session, make_product):
        product = make_product(stock=0)
        purchase = _buy(session, product.id, 20)
        _sell(session, product.id, 15)

        with pytest.raises(ConstraintViolationError):
            stock_ledger.update_transaction(session, purchase.id, {'quantity': 10})

        assert _stock(session, product.id) == 5

    def test_only_metadata(self, session, product):
        sale = _sell(session, product.id, 2)
        updated = stock_ledger.update_transaction(
            session, sale.id, {'date': date(2024, 5, 1), 'notes': 'invoice 42'}
        )

        assert updated.date == date(2024, 5, 1)
        assert updated.notes == 'invoice 42'
        assert updated.quantity == 2
        assert _stock(session, product.id) == 8

    def test_unknown_transaction(self, session):
        with pytest.raises(NotFoundError):
            stock_ledger.update_transaction(session, 'does-not-exist', {'quantity': 1})

    def test_unknown_target_product(self, session, product):
        sale = _sell(session, product.id, 2)
        with pytest.raises(NotFoundError):
            stock_ledger.update_transaction(session, sale.id, {'product_id': 'does-not-exist'})
        assert _stock(session, product.id) == 8

    def test_unknown_fields_are_rejected(self, session, product):
        sale = _sell(session, product.id, 2)
        with pytest.raises(ValidationError):
            stock_ledger.update_transaction(session, sale.id, {'price': 3})

    def test_invalid_quantity(self, session, product):
        sale = _sell(session, product.id, 2)
        with pytest.raises(ValidationError):
            stock_ledger.update_transaction(session, sale.id, {'quantity': -1})
        assert _stock(session, product.id) == 8


class TestListTransactions:

    def test_filters(self, session, make_product):
        first = make_product(name='First', stock=5)
        second = make_product(name='Second', stock=5)
        _sell(session, first.id, 1)

        assert len(stock_ledger.list_transactions(session)) == 3
        assert len(stock_ledger.list_transactions(session, product_id=first.id)) == 2
        sales = stock_ledger.list_transactions(session, type='sale')
        assert [t.product_id for t in sales] == [first.id]
        assert len(stock_ledger.list_transactions(session, product_id=second.id, type='sale')) == 0

    def test_newest_first(self, session, product):
        stock_ledger.create_transaction(session, product.id, 1, 'sale', date(2024, 6, 1))
        stock_ledger.create_transaction(session, product.id, 1, 'sale', date(2024, 3, 1))

        dates = [t.date for t in stock_ledger.list_transactions(session, product_id=product.id)]
        assert dates == [date(2024, 6, 1), date(2024, 3, 1), date(2024, 1, 1)]

    def test_get_unknown(self, session):
        with pytest.raises(NotFoundError):
            stock_ledger.get_transaction(session, 'does-not-exist')


class TestLedgerInvariant:
    """Stored stock always equals the signed sum of the history."""

    def test_example_scenario(self, session, make_product):
        product = make_product(stock=0)

        purchase = _buy(session, product.id, 20)
        purchase_id = purchase.id
        assert _stock(session, product.id) == 20

        _sell(session, product.id, 5)
        assert _stock(session, product.id) == 15

        with pytest.raises(InsufficientStockError):
            _sell(session, product.id, 20)
        assert _stock(session, product.id) == 15

        with pytest.raises(ConstraintViolationError):
            stock_ledger.delete_transaction(session, purchase_id)
        assert _stock(session, product.id) == 15
        assert stock_ledger.audit_stock(session) == []

    def test_replay_matches_stock(self, session, make_product):
        product = make_product(stock=0)
        operations = [
            ('purchase', 12), ('sale', 5), ('sale', 7), ('sale', 1),
            ('purchase', 3), ('sale', 4), ('purchase', 9), ('sale', 20),
        ]
        running = 0
        for type_, quantity in operations:
            try:
                stock_ledger.create_transaction(session, product.id, quantity, type_, DAY)
                running += quantity if type_ == 'purchase' else -quantity
            except InsufficientStockError:
                pass
            assert running >= 0
            assert _stock(session, product.id) == running

        assert stock_ledger.compute_ledger_stock(session, product.id) == running


class TestAudit:
    """Tests for drift detection and repair."""

    def test_no_drift_after_ledger_operations(self, session, product):
        sale = _sell(session, product.id, 3)
        stock_ledger.update_transaction(session, sale.id, {'quantity': 2})
        _buy(session, product.id, 1)

        assert stock_ledger.audit_stock(session) == []
        assert stock_ledger.compute_ledger_stock(session, product.id) == 9

    def test_detects_and_repairs_drift(self, session, product):
        session.execute(update(Product).where(Product.id == product.id).values(stock=25))
        session.commit()

        drift = stock_ledger.audit_stock(session)
        assert drift == [{
            'product_id': product.id,
            'name': 'Widget',
            'stored_stock': 25,
            'ledger_stock': 10,
            'difference': 15,
        }]

        assert stock_ledger.rebuild_stock(session) == 1
        assert _stock(session, product.id) == 10
        assert stock_ledger.audit_stock(session) == []

    def test_audit_single_product(self, session, make_product):
        drifted = make_product(name='Drifted', stock=1)
        make_product(name='Fine', stock=1)
        session.execute(update(Product).where(Product.id == drifted.id).values(stock=0))
        session.commit()

        assert len(stock_ledger.audit_stock(session)) == 1
        assert stock_ledger.audit_stock(session, product_id=drifted.id)[0]['difference'] == -1
