"""Products blueprint: JSON CRUD endpoints plus the low stock list."""
from flask import Blueprint, current_app, jsonify, request

from minierp.database import get_session
from minierp.forms.resource_forms import ProductForm
from minierp.services import product_service

products_bp = Blueprint('products', __name__, url_prefix='/api/products')


@products_bp.route('', methods=['GET'])
def list_products():
    """List all products, optionally filtered with ?q= on name or category."""
    session = get_session()
    search_query = request.args.get('q', '').strip()
    products = product_service.list_products(session, search_query or None)
    return jsonify([product.to_dict() for product in products])


# Registered before /<product_id> so "low-stock" is not taken for an id
@products_bp.route('/low-stock', methods=['GET'])
def low_stock():
    default = current_app.config.get('LOW_STOCK_THRESHOLD', 10)
    threshold = request.args.get('threshold', default, type=int)
    products = product_service.list_low_stock(get_session(), threshold)
    return jsonify([product.to_dict() for product in products])


@products_bp.route('/<product_id>', methods=['GET'])
def get_product(product_id):
    product = product_service.get_product(get_session(), product_id)
    return jsonify(product.to_dict())


@products_bp.route('', methods=['POST'])
def create_product():
    """Create a product; an optional ``stock`` is booked as an opening purchase."""
    data = request.get_json(silent=True)
    form = ProductForm.from_json(data)
    cleaned = form.cleaned_data()
    if isinstance(data, dict) and data.get('date'):
        cleaned['date'] = data['date']

    product = product_service.create_product(get_session(), cleaned)
    return jsonify(product.to_dict()), 201


@products_bp.route('/<product_id>', methods=['PUT'])
def update_product(product_id):
    form = ProductForm.from_json(request.get_json(silent=True), partial=True)
    product = product_service.update_product(get_session(), product_id, form.cleaned_data())
    return jsonify(product.to_dict())


@products_bp.route('/<product_id>', methods=['DELETE'])
def delete_product(product_id):
    """Delete a product; 409 while transactions still reference it."""
    product_service.delete_product(get_session(), product_id)
    return jsonify({'status': 'success', 'message': 'Product deleted successfully'})
