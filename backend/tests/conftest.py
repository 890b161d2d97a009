"""
Pytest fixtures for tillpoint backend tests.

Provides an in-memory database, test client, and product/sale helpers.
"""

from datetime import datetime

import pytest

from tillpoint import create_app
from tillpoint.extensions import db
from tillpoint.models import Product, SaleLine


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(autouse=True)
def undo_fallback_path(app, tmp_path):
    """Point the undo-log fallback file at a per-test location."""
    previous = app.config.get('UNDO_LOG_FALLBACK_PATH')
    path = tmp_path / 'undo_log_fallback.jsonl'
    app.config['UNDO_LOG_FALLBACK_PATH'] = str(path)
    yield path
    app.config['UNDO_LOG_FALLBACK_PATH'] = previous


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for committed products."""
    def _make(upc='123', name='Widget', price_cents=1000, stock=10, is_active=True):
        product = Product(
            upc=upc,
            name=name,
            price_cents=price_cents,
            stock=stock,
            is_active=is_active,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Widget, UPC 123, 10.00, 10 in stock."""
    return make_product()


@pytest.fixture(scope='function')
def make_legacy_line(db_session):
    """Factory for pre-transaction_id sale rows (grouped by seller + time bucket)."""
    def _make(created_at: datetime, seller_name='alice', product=None, quantity=1,
              unit_price_cents=1000, **fields):
        line = SaleLine(
            product_id=product.id if product is not None else None,
            upc=product.upc if product is not None else 'LEGACY',
            product_name=product.name if product is not None else 'Legacy item',
            unit_price_cents=unit_price_cents,
            quantity=quantity,
            total_cents=unit_price_cents * quantity,
            seller_name=seller_name,
            transaction_id=None,
            created_at=created_at,
            **fields,
        )
        db_session.add(line)
        db_session.commit()
        return line
    return _make
