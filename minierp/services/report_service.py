"""
Report service.
Provides dashboard statistics and inventory analytics as JSON-ready dicts.
"""
from collections import OrderedDict
from datetime import date
from decimal import Decimal

from sqlalchemy import case, func
from sqlalchemy.orm import joinedload, selectinload

from minierp.models import Product, Supplier, Transaction, TransactionType
from minierp.services.cache_service import REPORTS_MODULE, get_cache, reports_ttl


def _money(value) -> float:
    """Round a money amount to cents for JSON output."""
    return float(Decimal(str(value or 0)).quantize(Decimal('0.01')))


def _cached(key: str, loader):
    """Serve a report through the Redis cache when it is available."""
    return get_cache().memoize(REPORTS_MODULE, key, loader, ttl=reports_ttl())


def _subtract_months(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    # Clamp the day for shorter months (31 March - 1 month = 28/29 February)
    for candidate in (day.day, 30, 29, 28):
        try:
            return date(year, month, candidate)
        except ValueError:
            continue
    raise ValueError(f'Cannot subtract {months} months from {day}')


def dashboard_stats(session) -> dict:
    def load():
        inventory_value = session.query(
            func.coalesce(func.sum(Product.price * Product.stock), 0)
        ).scalar()
        return {
            'totalProducts': session.query(func.count(Product.id)).scalar() or 0,
            'totalSuppliers': session.query(func.count(Supplier.id)).scalar() or 0,
            'totalTransactions': session.query(func.count(Transaction.id)).scalar() or 0,
            'inventoryValue': _money(inventory_value),
        }
    return _cached('dashboard', load)


def inventory_value_report(session) -> dict:
    def load():
        products = session.query(Product).all()
        rows = [
            {
                'id': p.id,
                'name': p.name,
                'category': p.category,
                'price': _money(p.price),
                'stock': p.stock,
                'total_value': _money(p.inventory_value),
            }
            for p in products
        ]
        rows.sort(key=lambda row: row['total_value'], reverse=True)
        return {
            'products': rows,
            'totalInventoryValue': _money(sum(p.inventory_value for p in products)),
        }
    return _cached('inventory-value', load)


def products_by_supplier(session) -> list:
    def load():
        suppliers = session.query(Supplier).options(selectinload(Supplier.products)).all()
        report = []
        for supplier in suppliers:
            report.append({
                'supplier': {
                    'id': supplier.id,
                    'name': supplier.name,
                    'contact': supplier.contact,
                },
                'productCount': len(supplier.products),
                'products': [
                    {
                        'id': p.id,
                        'name': p.name,
                        'category': p.category,
                        'price': _money(p.price),
                        'stock': p.stock,
                    }
                    for p in sorted(supplier.products, key=lambda p: p.name)
                ],
                'totalValue': _money(sum(p.inventory_value for p in supplier.products)),
            })
        report.sort(key=lambda row: row['totalValue'], reverse=True)
        return report
    return _cached('products-by-supplier', load)


def low_stock_report(session, threshold: int) -> dict:
    def load():
        products = (
            session.query(Product)
            .options(joinedload(Product.supplier))
            .filter(Product.stock < threshold)
            .order_by(Product.stock.asc(), Product.name)
            .all()
        )
        return {
            'threshold': threshold,
            'count': len(products),
            'products': [p.to_dict() for p in products],
        }
    return _cached(f'low-stock:{threshold}', load)


def sales_report(session) -> dict:
    def load():
        sales = (
            session.query(Transaction)
            .options(joinedload(Transaction.product))
            .filter(Transaction.type == TransactionType.SALE)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
            .all()
        )
        rows = []
        total = Decimal('0')
        for sale in sales:
            unit_price = Decimal(sale.product.price or 0)
            value = unit_price * sale.quantity
            total += value
            row = sale.to_dict()
            row['unit_price'] = _money(unit_price)
            row['total_value'] = _money(value)
            rows.append(row)
        return {
            'transactions': rows,
            'totalSales': _money(total),
            'transactionCount': len(rows),
        }
    return _cached('sales', load)


def monthly_trends(session, months: int, today: date = None) -> dict:
    """Sales and purchases per YYYY-MM over the last ``months`` months."""
    today = today or date.today()
    cutoff = _subtract_months(today, months)

    def load():
        transactions = (
            session.query(Transaction)
            .options(joinedload(Transaction.product))
            .filter(Transaction.date >= cutoff)
            .all()
        )
        monthly = OrderedDict()
        for t in sorted(transactions, key=lambda t: t.date):
            month_key = t.date.strftime('%Y-%m')
            bucket = monthly.setdefault(month_key, {
                'month': month_key,
                'sales': {'count': 0, 'quantity': 0, 'value': 0.0},
                'purchases': {'count': 0, 'quantity': 0, 'value': 0.0},
            })
            side = bucket['sales' if t.type is TransactionType.SALE else 'purchases']
            side['count'] += 1
            side['quantity'] += t.quantity
            side['value'] = _money(Decimal(str(side['value'])) + Decimal(t.product.price or 0) * t.quantity)

        trends = list(monthly.values())
        return {
            'trends': trends,
            'period': f'{months} months',
            'totalMonths': len(trends),
        }
    return _cached(f'trends:{months}:{today.isoformat()}', load)


def category_analytics(session, threshold: int) -> dict:
    def load():
        rows = session.query(
            Product.category,
            func.count(Product.id),
            func.coalesce(func.sum(Product.stock), 0),
            func.coalesce(func.sum(Product.price * Product.stock), 0),
            func.avg(Product.price),
            func.min(Product.stock),
            func.max(Product.stock),
            func.sum(case((Product.stock < threshold, 1), else_=0)),
        ).group_by(Product.category).all()

        analytics = [
            {
                'category': category,
                'productCount': int(count),
                'totalStock': int(total_stock),
                'totalValue': _money(total_value),
                'avgPrice': _money(avg_price),
                'minStock': int(min_stock or 0),
                'maxStock': int(max_stock or 0),
                'lowStockCount': int(low_count or 0),
            }
            for category, count, total_stock, total_value, avg_price, min_stock, max_stock, low_count in rows
        ]
        analytics.sort(key=lambda row: row['totalValue'], reverse=True)
        return {
            'categories': analytics,
            'totalCategories': len(analytics),
            'totalValue': _money(sum(Decimal(str(row['totalValue'])) for row in analytics)),
        }
    return _cached(f'categories:{threshold}', load)


def supplier_analytics(session, threshold: int) -> dict:
    def load():
        rows = session.query(
            Supplier,
            func.count(Product.id),
            func.coalesce(func.sum(Product.stock), 0),
            func.coalesce(func.sum(Product.price * Product.stock), 0),
            func.avg(Product.price),
            func.sum(case((Product.stock < threshold, 1), else_=0)),
        ).outerjoin(
            Product, Product.supplier_id == Supplier.id
        ).group_by(Supplier.id).all()

        performance = [
            {
                'supplier': {
                    'id': supplier.id,
                    'name': supplier.name,
                    'contact': supplier.contact,
                    'email': supplier.email,
                },
                'metrics': {
                    'productCount': int(count or 0),
                    'totalStock': int(total_stock or 0),
                    'totalValue': _money(total_value),
                    'avgProductPrice': _money(avg_price),
                    'lowStockProducts': int(low_count or 0),
                },
            }
            for supplier, count, total_stock, total_value, avg_price, low_count in rows
        ]
        performance.sort(key=lambda row: row['metrics']['totalValue'], reverse=True)
        return {
            'suppliers': performance,
            'totalSuppliers': len(performance),
        }
    return _cached(f'suppliers:{threshold}', load)
