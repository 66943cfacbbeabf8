import pytest
from datetime import date
import uuid

from minierp import create_app
from minierp import database
from minierp.database import Base, get_session
from minierp.services import product_service, supplier_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application instance backed by a throwaway SQLite file."""
    db_path = tmp_path_factory.mktemp('db') / 'minierp-test.db'
    app = create_app('config.TestingConfig', {
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
    })
    with app.app_context():
        database.create_tables()
    yield app
    database.dispose_engine()


@pytest.fixture(autouse=True)
def clean_tables(app):
    """Empty every table after each test."""
    yield
    get_session().remove()
    with database.get_engine().begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Database session inside an application context."""
    with app.app_context():
        session = get_session()
        yield session
        session.rollback()


@pytest.fixture(scope='function')
def supplier(session):
    suffix = str(uuid.uuid4())[:8]
    return supplier_service.create_supplier(session, {
        'name': f'Acme Supplies {suffix}',
        'contact': 'Jane Doe',
        'email': f'jane-{suffix}@acme.test',
    })


@pytest.fixture(scope='function')
def make_product(session, supplier):
    """Factory for products with an opening stock booked through the ledger."""
    def _make(name='Widget', stock=0, price='10.00', category='Hardware', supplier_id=None):
        return product_service.create_product(session, {
            'name': name,
            'category': category,
            'price': price,
            'supplier_id': supplier_id or supplier.id,
            'stock': stock,
            'date': date(2024, 1, 1),
        })
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product with 10 units on hand."""
    return make_product(stock=10)


@pytest.fixture(scope='function')
def api_supplier(client):
    """Supplier created through the API, as returned JSON."""
    response = client.post('/api/suppliers', json={
        'name': 'API Supplier',
        'contact': 'John Smith',
        'email': 'john@supplier.test',
    })
    assert response.status_code == 201
    return response.get_json()


@pytest.fixture(scope='function')
def api_product(client, api_supplier):
    """Product with 10 units on hand created through the API, as returned JSON."""
    response = client.post('/api/products', json={
        'name': 'API Widget',
        'category': 'Hardware',
        'price': 12.5,
        'supplier_id': api_supplier['id'],
        'stock': 10,
    })
    assert response.status_code == 201
    return response.get_json()
