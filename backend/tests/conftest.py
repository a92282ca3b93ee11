"""
Pytest fixtures for stockroom backend tests.

Provides an app on a temporary SQLite file, a per-test table wipe, a cleared
cache and a test client. Events are dispatched inline.
"""

import pytest

from stockroom import create_app
from stockroom.extensions import cache, db
from stockroom.services import products_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "stockroom-test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{db_path}",
        'STOCKROOM_EVENTS_SYNC': True,
        'STOCKROOM_TX_TIMEOUT_SECONDS': 10,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh tables and an empty cache for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        cache.clear()

        yield db.session

        db.session.rollback()
        db.session.remove()


@pytest.fixture(scope='function')
def client(app, db_session):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def make_product(db_session):
    """Factory creating products through the repository."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        data = {
            "name": f"Test Product {counter['n']}",
            "barcode": f"{48000000 + counter['n']:08d}",
            "price": "50.00",
            "category": "General",
            "stock_quantity": 10,
        }
        data.update(overrides)
        return products_service.create_product(data)

    return _make
