"""Reports blueprint: dashboard figures and inventory analytics."""
from flask import Blueprint, current_app, jsonify, request

from minierp.database import get_session
from minierp.services import report_service

reports_bp = Blueprint('reports', __name__, url_prefix='/api/reports')


def _threshold():
    default = current_app.config.get('LOW_STOCK_THRESHOLD', 10)
    return request.args.get('threshold', default, type=int)


@reports_bp.route('/dashboard')
def dashboard():
    return jsonify(report_service.dashboard_stats(get_session()))


@reports_bp.route('/inventory-value')
def inventory_value():
    return jsonify(report_service.inventory_value_report(get_session()))


@reports_bp.route('/products-by-supplier')
def products_by_supplier():
    return jsonify(report_service.products_by_supplier(get_session()))


@reports_bp.route('/low-stock')
def low_stock():
    return jsonify(report_service.low_stock_report(get_session(), _threshold()))


@reports_bp.route('/sales')
def sales():
    return jsonify(report_service.sales_report(get_session()))


@reports_bp.route('/trends/monthly')
def monthly_trends():
    """Per month totals for the last ?months= months (default 6)."""
    months = max(1, request.args.get('months', 6, type=int))
    return jsonify(report_service.monthly_trends(get_session(), months))


@reports_bp.route('/analytics/categories')
def category_analytics():
    return jsonify(report_service.category_analytics(get_session(), _threshold()))


@reports_bp.route('/analytics/suppliers')
def supplier_analytics():
    return jsonify(report_service.supplier_analytics(get_session(), _threshold()))
