"""Suppliers blueprint: JSON CRUD endpoints."""
from flask import Blueprint, jsonify, request

from minierp.database import get_session
from minierp.forms.resource_forms import SupplierForm
from minierp.services import supplier_service

suppliers_bp = Blueprint('suppliers', __name__, url_prefix='/api/suppliers')


@suppliers_bp.route('', methods=['GET'])
def list_suppliers():
    """List all suppliers, optionally filtered with ?q=."""
    session = get_session()
    search_query = request.args.get('q', '').strip()
    suppliers = supplier_service.list_suppliers(session, search_query or None)
    return jsonify([supplier.to_dict() for supplier in suppliers])


@suppliers_bp.route('/<supplier_id>', methods=['GET'])
def get_supplier(supplier_id):
    supplier = supplier_service.get_supplier(get_session(), supplier_id)
    return jsonify(supplier.to_dict())


@suppliers_bp.route('', methods=['POST'])
def create_supplier():
    form = SupplierForm.from_json(request.get_json(silent=True))
    supplier = supplier_service.create_supplier(get_session(), form.cleaned_data())
    return jsonify(supplier.to_dict()), 201


@suppliers_bp.route('/<supplier_id>', methods=['PUT'])
def update_supplier(supplier_id):
    form = SupplierForm.from_json(request.get_json(silent=True), partial=True)
    supplier = supplier_service.update_supplier(get_session(), supplier_id, form.cleaned_data())
    return jsonify(supplier.to_dict())


@suppliers_bp.route('/<supplier_id>', methods=['DELETE'])
def delete_supplier(supplier_id):
    """Delete a supplier; 409 while products still reference it."""
    supplier_service.delete_supplier(get_session(), supplier_id)
    return jsonify({'status': 'success', 'message': 'Supplier deleted successfully'})
