"""Advisory endpoints: reorder suggestions and inventory chat."""
from flask import Blueprint, jsonify, request

from minierp.database import get_session
from minierp.exceptions import ValidationError
from minierp.services import advisor_service

ai_bp = Blueprint('ai', __name__, url_prefix='/api/ai')


def _body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


@ai_bp.route('/reorder-suggestion', methods=['POST'])
def reorder_suggestion():
    product_id = _body().get('productId')
    if product_id is not None and not isinstance(product_id, str):
        raise ValidationError('Product ID must be a string')
    return jsonify(advisor_service.reorder_suggestion(get_session(), product_id))


@ai_bp.route('/batch-reorder-suggestions', methods=['POST'])
def batch_reorder_suggestions():
    threshold = _body().get('threshold')
    if threshold is not None and (isinstance(threshold, bool) or not isinstance(threshold, int)):
        raise ValidationError('Threshold must be an integer')
    return jsonify(advisor_service.batch_reorder_suggestions(get_session(), threshold))


@ai_bp.route('/chat', methods=['POST'])
def chat():
    message = _body().get('message')
    if not isinstance(message, str):
        raise ValidationError('Message is required')
    return jsonify(advisor_service.chat(get_session(), message))
