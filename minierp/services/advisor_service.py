"""
Reorder advisor.

Builds inventory context from the database, asks an OpenAI compatible
chat-completions endpoint for advice and falls back to a deterministic local
analysis whenever the external call is unavailable or fails.
"""
import logging
import math
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

import requests
from flask import current_app

from minierp.exceptions import NotFoundError, ValidationError
from minierp.models import Product, Supplier, Transaction, TransactionType

logger = logging.getLogger(__name__)

THINK_BLOCK_RE = re.compile(r'<think>.*?</think>', re.DOTALL)
UNAVAILABLE_NOTE = '(AI service temporarily unavailable, using fallback analysis)'

REORDER_SYSTEM_PROMPT = (
    "You are an expert inventory management assistant. Analyze product data and "
    "provide smart, actionable reorder recommendations. Be concise but thorough."
)
CHAT_SYSTEM_PROMPT = (
    "You are a concise inventory management assistant. Give short, specific answers "
    "using the real data provided. Use actual numbers and be actionable."
)


class AdvisorUnavailable(Exception):
    """The external completion service could not produce an answer."""


class ChatCompletionClient:
    """Minimal client for an OpenAI compatible /chat/completions endpoint."""

    def __init__(self, base_url: str, api_key: Optional[str], model: str, timeout: float = 20):
        if not api_key:
            raise AdvisorUnavailable("AI_API_KEY is not configured")

        self.url = f"{base_url.rstrip('/')}/chat/completions"
        self.model = model
        self.timeout = timeout
        self.headers = {
            'Authorization': f'Bearer {api_key}',
            'Content-Type': 'application/json'
        }

    def complete(self, system_prompt: str, user_prompt: str,
                 temperature: float = 0.6, max_tokens: int = 1024) -> str:
        """
        Request one completion and return its text without reasoning blocks.

        Raises:
            requests.RequestException: transport or HTTP error
            AdvisorUnavailable: malformed or empty response body
        """
        payload = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': system_prompt},
                {'role': 'user', 'content': user_prompt},
            ],
            'temperature': temperature,
            'max_tokens': max_tokens,
            'stream': False,
        }

        response = requests.post(self.url, json=payload, headers=self.headers, timeout=self.timeout)
        response.raise_for_status()

        try:
            content = response.json()['choices'][0]['message']['content']
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AdvisorUnavailable(f"Malformed completion response: {e}")
        if content is None:
            content = ''
        if not isinstance(content, str):
            raise AdvisorUnavailable(f"Unsupported completion content: {type(content).__name__}")

        content = THINK_BLOCK_RE.sub('', content).strip()
        if not content:
            raise AdvisorUnavailable("Empty completion")
        return content


def get_client() -> ChatCompletionClient:
    config = current_app.config
    return ChatCompletionClient(
        base_url=config.get('AI_API_BASE_URL', ''),
        api_key=config.get('AI_API_KEY'),
        model=config.get('AI_MODEL', ''),
        timeout=config.get('AI_TIMEOUT', 20),
    )


def _ask(system_prompt: str, user_prompt: str, **kwargs) -> Optional[str]:
    """Return the completion text, or None when the fallback must be used."""
    try:
        return get_client().complete(system_prompt, user_prompt, **kwargs)
    except AdvisorUnavailable as e:
        logger.info(f"[AI] Using fallback: {e}")
    except requests.RequestException as e:
        logger.warning(f"[AI] Completion request failed: {e}")
    return None


def _threshold(threshold: Optional[int]) -> int:
    if threshold is None:
        return current_app.config.get('LOW_STOCK_THRESHOLD', 10)
    return threshold


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# =====================================================
# REORDER SUGGESTIONS
# =====================================================

def fallback_reorder_suggestion(current_stock: int, total_sold: int) -> str:
    """Deterministic advice assuming the history covers about three months."""
    avg_monthly_sales = max(1, math.ceil(total_sold / 3))
    reorder_point = avg_monthly_sales * 2

    if current_stock <= reorder_point:
        suggested_order = max(avg_monthly_sales * 3, 20)
        return (
            f"REORDER RECOMMENDED: Current stock ({current_stock}) is at or below the reorder "
            f"point ({reorder_point}). Suggested order quantity: {suggested_order} units based "
            f"on average monthly sales of {avg_monthly_sales} units. {UNAVAILABLE_NOTE}"
        )

    months_of_stock = current_stock // avg_monthly_sales
    return (
        f"Stock levels are adequate. Current stock ({current_stock}) provides approximately "
        f"{months_of_stock} months of inventory based on sales trends. {UNAVAILABLE_NOTE}"
    )


def _reorder_prompt(product: Product, transactions: List[Transaction],
                    total_sold: int, total_purchased: int) -> str:
    sales = [t for t in transactions if t.type is TransactionType.SALE]
    purchases = [t for t in transactions if t.type is TransactionType.PURCHASE]
    history = '\n'.join(
        f"- {t.type.value.upper()}: {t.quantity} units on {t.date.isoformat()}"
        for t in transactions[-10:]
    )
    return (
        f"Product: {product.name}\n"
        f"Category: {product.category}\n"
        f"Current stock: {product.stock} units\n"
        f"Price: ${product.price}\n"
        f"Total sold: {total_sold} units in {len(sales)} sales\n"
        f"Total purchased: {total_purchased} units in {len(purchases)} purchases\n\n"
        f"Recent transactions:\n{history or '- none'}\n\n"
        "Recommend whether and how much to reorder, with the reasoning."
    )


def _suggest_for(product: Product, transactions: List[Transaction]) -> str:
    total_sold = sum(t.quantity for t in transactions if t.type is TransactionType.SALE)
    total_purchased = sum(t.quantity for t in transactions if t.type is TransactionType.PURCHASE)

    prompt = _reorder_prompt(product, transactions, total_sold, total_purchased)
    answer = _ask(REORDER_SYSTEM_PROMPT, prompt, temperature=0.6, max_tokens=1024)
    return answer or fallback_reorder_suggestion(product.stock, total_sold)


def _history(session, product_id: str) -> List[Transaction]:
    return (
        session.query(Transaction)
        .filter(Transaction.product_id == product_id)
        .order_by(Transaction.date, Transaction.created_at)
        .all()
    )


def reorder_suggestion(session, product_id: str) -> dict:
    if not product_id:
        raise ValidationError('Product ID is required')

    product = session.query(Product).filter(Product.id == product_id).first()
    if product is None:
        raise NotFoundError(f'Product {product_id} not found')

    return {
        'productId': product.id,
        'productName': product.name,
        'currentStock': product.stock,
        'suggestion': _suggest_for(product, _history(session, product.id)),
        'timestamp': _timestamp(),
    }


def batch_reorder_suggestions(session, threshold: Optional[int] = None) -> dict:
    """Suggestions for every product below the low stock threshold."""
    threshold = _threshold(threshold)
    products = (
        session.query(Product)
        .filter(Product.stock < threshold)
        .order_by(Product.stock.asc(), Product.name)
        .all()
    )
    suggestions = [
        {
            'productId': product.id,
            'productName': product.name,
            'currentStock': product.stock,
            'suggestion': _suggest_for(product, _history(session, product.id)),
        }
        for product in products
    ]
    return {
        'count': len(suggestions),
        'suggestions': suggestions,
        'timestamp': _timestamp(),
    }


# =====================================================
# CHAT
# =====================================================

def _snapshot(session, threshold: int) -> dict:
    products = session.query(Product).order_by(Product.name).all()
    suppliers = session.query(Supplier).order_by(Supplier.name).all()
    total_value = sum((Decimal(p.price or 0) * p.stock for p in products), Decimal('0'))
    return {
        'products': products,
        'suppliers': suppliers,
        'low_stock': [p for p in products if p.stock < threshold],
        'categories': sorted({p.category for p in products}),
        'total_value': total_value,
    }


def fallback_chat_answer(message: str, snapshot: dict, threshold: int) -> str:
    """Keyword routed summary of live figures."""
    text = message.lower()
    products = snapshot['products']
    low_stock = snapshot['low_stock']
    categories = snapshot['categories']
    total_value = f"${round(snapshot['total_value']):,}"

    if 'inventory' in text or 'status' in text:
        answer = (
            f"You have {len(products)} products worth {total_value}. "
            f"{len(low_stock)} items need reordering (below {threshold} units)."
        )
    elif 'reorder' in text or 'low stock' in text:
        names = ', '.join(p.name for p in low_stock[:3])
        more = '...' if len(low_stock) > 3 else ''
        answer = f"{len(low_stock)} products need reordering: {names}{more}"
    elif 'supplier' in text:
        names = ', '.join(s.name for s in snapshot['suppliers'][:3])
        answer = f"You have {len(snapshot['suppliers'])} suppliers. Top suppliers: {names}"
    elif 'categor' in text:
        more = '...' if len(categories) > 4 else ''
        answer = f"{len(categories)} categories: {', '.join(categories[:4])}{more}"
    else:
        answer = (
            f"Current inventory: {len(products)} products, {total_value} total value, "
            f"{len(low_stock)} items need reordering."
        )
    return f"{answer} (AI service temporarily unavailable)"


def _chat_prompt(session, message: str, snapshot: dict, threshold: int) -> str:
    recent_sales = (
        session.query(Transaction)
        .filter(Transaction.type == TransactionType.SALE)
        .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        .limit(10)
        .all()
    )
    low_lines = '\n'.join(
        f"- {p.name}: {p.stock} units ({p.category})" for p in snapshot['low_stock'][:5]
    )
    sales_lines = '\n'.join(
        f"- {t.product.name}: {t.quantity} units on {t.date.isoformat()}" for t in recent_sales
    )
    return (
        f"Total products: {len(snapshot['products'])}\n"
        f"Total inventory value: ${snapshot['total_value']:,.2f}\n"
        f"Low stock items: {len(snapshot['low_stock'])} (below {threshold} units)\n"
        f"Categories: {', '.join(snapshot['categories'])}\n"
        f"Suppliers: {len(snapshot['suppliers'])}\n\n"
        f"Low stock products:\n{low_lines or '- none'}\n\n"
        f"Recent sales:\n{sales_lines or '- none'}\n\n"
        f'User question: "{message}"'
    )


def chat(session, message: str, threshold: Optional[int] = None) -> dict:
    if not message or not message.strip():
        raise ValidationError('Message is required')
    threshold = _threshold(threshold)

    snapshot = _snapshot(session, threshold)
    prompt = _chat_prompt(session, message, snapshot, threshold)
    answer = _ask(CHAT_SYSTEM_PROMPT, prompt, temperature=0.3, max_tokens=200)

    return {
        'message': answer or fallback_chat_answer(message, snapshot, threshold),
        'timestamp': _timestamp(),
        'dataSnapshot': {
            'totalProducts': len(snapshot['products']),
            'totalValue': int(round(snapshot['total_value'])),
            'lowStockCount': len(snapshot['low_stock']),
            'categoriesCount': len(snapshot['categories']),
        },
    }
