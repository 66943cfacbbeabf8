"""Main blueprint with health check endpoints."""
from flask import Blueprint, current_app, jsonify
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from minierp.database import get_session
from minierp.models import Product

main_bp = Blueprint('main', __name__)


@main_bp.route('/api/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected) with the product count
        500: Unhealthy (DB error)
    """
    session = get_session()
    try:
        total_products = session.query(func.count(Product.id)).scalar()
    except SQLAlchemyError as e:
        session.rollback()
        current_app.logger.error(f"[HEALTH] Database check failed: {e}")
        return jsonify({
            'status': 'ERROR',
            'message': 'Database connection failed',
            'error': str(e)
        }), 500

    return jsonify({
        'status': 'OK',
        'message': 'Mini ERP Backend is running',
        'database': 'Connected',
        'products': total_products
    }), 200


@main_bp.route('/health/cache')
def health_cache():
    """
    Cache health check endpoint.

    Returns:
        200: Cache OK or Degraded (app continues without cache)

    Note:
        This endpoint NEVER returns 500, as cache is optional.
    """
    from minierp.services.cache_service import get_cache

    try:
        cache = get_cache()
    except RuntimeError as e:
        return jsonify({
            'status': 'degraded',
            'cache': 'not_initialized',
            'message': str(e)
        }), 200

    if not cache.is_available():
        return jsonify({
            'status': 'degraded',
            'cache': 'unavailable',
            'message': 'Redis unavailable, reports are computed on every request'
        }), 200

    if cache.probe():
        return jsonify({
            'status': 'ok',
            'cache': 'connected',
            'redis': 'healthy',
            'message': 'Cache is working correctly'
        }), 200

    return jsonify({
        'status': 'degraded',
        'cache': 'connected',
        'redis': 'read_write_failed',
        'message': 'Cache read/write test failed'
    }), 200
