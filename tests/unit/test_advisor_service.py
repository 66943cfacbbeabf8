"""
Unit tests for the reorder advisor.
The external completion API is never reached: requests.post is replaced.
"""

import pytest
import requests
from datetime import date

from minierp.exceptions import NotFoundError, ValidationError
from minierp.services import advisor_service, stock_ledger


class FakeResponse:
    def __init__(self, payload, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f'{self.status_code} Server Error')

    def json(self):
        return self.payload


def _completion(content):
    return {'choices': [{'message': {'role': 'assistant', 'content': content}}]}


@pytest.fixture
def ai_enabled(app, monkeypatch):
    monkeypatch.setitem(app.config, 'AI_API_KEY', 'test-key')
    monkeypatch.setitem(app.config, 'AI_API_BASE_URL', 'https://llm.example/v1/')


class TestFallbackReorderSuggestion:
    """The local analysis assumes three months of history."""

    def test_reorder_when_at_reorder_point(self):
        # avg 10/month, reorder point 20
        text = advisor_service.fallback_reorder_suggestion(current_stock=20, total_sold=30)

        assert text.startswith('REORDER RECOMMENDED')
        assert 'reorder point (20)' in text
        assert 'Suggested order quantity: 30 units' in text

    def test_minimum_order_is_twenty(self):
        text = advisor_service.fallback_reorder_suggestion(current_stock=0, total_sold=0)
        assert 'Suggested order quantity: 20 units' in text

    def test_adequate_stock_reports_months(self):
        text = advisor_service.fallback_reorder_suggestion(current_stock=55, total_sold=30)

        assert text.startswith('Stock levels are adequate')
        assert 'approximately 5 months' in text

    def test_average_rounds_up(self):
        # ceil(10 / 3) = 4, reorder point 8
        text = advisor_service.fallback_reorder_suggestion(current_stock=8, total_sold=10)
        assert 'reorder point (8)' in text


class TestReorderSuggestion:

    def test_fallback_without_api_key(self, session, product):
        stock_ledger.create_transaction(session, product.id, 6, 'sale', date(2024, 2, 1))

        result = advisor_service.reorder_suggestion(session, product.id)

        assert result['productId'] == product.id
        assert result['productName'] == 'Widget'
        assert result['currentStock'] == 4
        # avg ceil(6 / 3) = 2, reorder point 4
        assert result['suggestion'] == advisor_service.fallback_reorder_suggestion(4, 6)
        assert result['timestamp']

    def test_uses_completion_and_strips_reasoning(self, session, product, ai_enabled, monkeypatch):
        calls = []

        def fake_post(url, json=None, headers=None, timeout=None):
            calls.append({'url': url, 'json': json, 'headers': headers, 'timeout': timeout})
            return FakeResponse(_completion('<think>long reasoning</think>\nOrder 25 units this week.'))

        monkeypatch.setattr(advisor_service.requests, 'post', fake_post)

        result = advisor_service.reorder_suggestion(session, product.id)

        assert result['suggestion'] == 'Order 25 units this week.'
        assert calls[0]['url'] == 'https://llm.example/v1/chat/completions'
        assert calls[0]['headers']['Authorization'] == 'Bearer test-key'
        assert 'Widget' in calls[0]['json']['messages'][1]['content']

    @pytest.mark.parametrize('response', [
        FakeResponse({}, status_code=503),
        FakeResponse({'unexpected': True}),
        FakeResponse(_completion('<think>only thoughts</think>')),
        FakeResponse(_completion([{'type': 'text', 'text': 'Order 25 units.'}])),
    ])
    def test_falls_back_on_bad_responses(self, session, product, ai_enabled, monkeypatch, response):
        monkeypatch.setattr(advisor_service.requests, 'post', lambda *args, **kwargs: response)

        result = advisor_service.reorder_suggestion(session, product.id)
        assert result['suggestion'] == advisor_service.fallback_reorder_suggestion(10, 0)

    def test_falls_back_on_timeout(self, session, product, ai_enabled, monkeypatch):
        def timeout(*args, **kwargs):
            raise requests.Timeout('read timed out')

        monkeypatch.setattr(advisor_service.requests, 'post', timeout)

        result = advisor_service.reorder_suggestion(session, product.id)
        assert 'temporarily unavailable' in result['suggestion']

    def test_unknown_product(self, session):
        with pytest.raises(NotFoundError):
            advisor_service.reorder_suggestion(session, 'does-not-exist')

    def test_product_id_required(self, session):
        with pytest.raises(ValidationError):
            advisor_service.reorder_suggestion(session, None)


class TestBatchReorderSuggestions:

    def test_only_low_stock_products(self, session, make_product):
        make_product(name='Plenty', stock=50)
        make_product(name='Scarce', stock=2)

        result = advisor_service.batch_reorder_suggestions(session)

        assert result['count'] == 1
        assert result['suggestions'][0]['productName'] == 'Scarce'
        assert result['suggestions'][0]['suggestion'].startswith('REORDER RECOMMENDED')


class TestChat:

    @pytest.fixture
    def stocked(self, session, make_product):
        make_product(name='Drill', category='Tools', price='50.00', stock=4)
        make_product(name='Bulb', category='Lighting', price='2.00', stock=100)

    def test_inventory_question(self, session, stocked):
        result = advisor_service.chat(session, 'What is my inventory status?')

        assert result['message'].startswith('You have 2 products worth $400.')
        assert '1 items need reordering (below 10 units)' in result['message']
        assert result['dataSnapshot'] == {
            'totalProducts': 2,
            'totalValue': 400,
            'lowStockCount': 1,
            'categoriesCount': 2,
        }

    def test_reorder_question(self, session, stocked):
        result = advisor_service.chat(session, 'What should I reorder?')
        assert result['message'].startswith('1 products need reordering: Drill')

    def test_supplier_question(self, session, stocked, supplier):
        result = advisor_service.chat(session, 'Who are my suppliers?')
        assert result['message'].startswith(f'You have 1 suppliers. Top suppliers: {supplier.name}')

    def test_category_question(self, session, stocked):
        result = advisor_service.chat(session, 'Which categories do I have?')
        assert result['message'].startswith('2 categories: Lighting, Tools')

    def test_other_question(self, session, stocked):
        result = advisor_service.chat(session, 'hello')
        assert result['message'].startswith('Current inventory: 2 products, $400 total value')

    def test_uses_completion(self, session, stocked, ai_enabled, monkeypatch):
        monkeypatch.setattr(
            advisor_service.requests, 'post',
            lambda *args, **kwargs: FakeResponse(_completion('Reorder the Drill.'))
        )
        assert advisor_service.chat(session, 'hello')['message'] == 'Reorder the Drill.'

    def test_empty_message(self, session):
        with pytest.raises(ValidationError):
            advisor_service.chat(session, '   ')
