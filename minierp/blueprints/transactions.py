"""
Transactions blueprint.

Every write goes through the stock ledger, so product stock moves in the
same database transaction as the purchase or sale row.
"""
from datetime import date

from flask import Blueprint, jsonify, request

from minierp.blueprints.metrics import record_stock_movement
from minierp.database import get_session
from minierp.forms.resource_forms import TransactionForm
from minierp.services import stock_ledger

transactions_bp = Blueprint('transactions', __name__, url_prefix='/api/transactions')


@transactions_bp.route('', methods=['GET'])
def list_transactions():
    """List transactions, newest first; filter with ?product_id= and ?type=."""
    transactions = stock_ledger.list_transactions(
        get_session(),
        product_id=request.args.get('product_id') or None,
        type=request.args.get('type') or None
    )
    return jsonify([t.to_dict() for t in transactions])


@transactions_bp.route('/<transaction_id>', methods=['GET'])
def get_transaction(transaction_id):
    transaction = stock_ledger.get_transaction(get_session(), transaction_id)
    return jsonify(transaction.to_dict())


@transactions_bp.route('', methods=['POST'])
def create_transaction():
    """
    Record a purchase or sale.

    Returns:
        201 with the transaction, 404 unknown product, 409 insufficient stock
    """
    data = TransactionForm.from_json(request.get_json(silent=True)).cleaned_data()
    transaction = stock_ledger.create_transaction(
        get_session(),
        product_id=data['product_id'],
        quantity=data['quantity'],
        type=data['type'],
        date=data['date'] or date.today(),
        notes=data['notes']
    )
    record_stock_movement('create', transaction.type.value)
    return jsonify(transaction.to_dict()), 201


@transactions_bp.route('/<transaction_id>', methods=['PUT'])
def update_transaction(transaction_id):
    """Edit a transaction; omitted fields keep their value."""
    form = TransactionForm.from_json(request.get_json(silent=True), partial=True)
    transaction = stock_ledger.update_transaction(get_session(), transaction_id, form.cleaned_data())
    record_stock_movement('update', transaction.type.value)
    return jsonify(transaction.to_dict())


@transactions_bp.route('/<transaction_id>', methods=['DELETE'])
def delete_transaction(transaction_id):
    removed = stock_ledger.delete_transaction(get_session(), transaction_id)
    record_stock_movement('delete', removed.type.value)
    return jsonify({'status': 'success', 'message': 'Transaction deleted successfully'})
