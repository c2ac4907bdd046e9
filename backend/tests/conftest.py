"""
Pytest fixtures for co2ledger backend tests.

Provides test database setup, a configured tank, cylinder factories, and
test clients.
"""

from itertools import count

import httpx
import pytest
from co2ledger import create_app
from co2ledger.extensions import db
from co2ledger.services import cylinder_service, tank_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'FILLING_DEBITS_TANK': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def http(app, db_session):
    """httpx client talking to the WSGI app in-process."""
    with httpx.Client(transport=httpx.WSGITransport(app=app), base_url="http://co2ledger.test") as c:
        yield c


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


@pytest.fixture(scope='function')
def tank(db_session):
    """Tank at 500 kg of a 1000 kg capacity."""
    return tank_service.create_tank(capacity=1000, current_level=500, minimum_threshold=20)


_serials = count(1)


@pytest.fixture(scope='function')
def make_cylinder(db_session):
    """Factory: register a cylinder, overriding any field."""

    def _make(**overrides):
        payload = {
            "serial_number": f"CYL-{next(_serials):05d}",
            "capacity": "22kg",
            "manufacturing_date": "2020-01-15",
            "last_hydrostatic_test": "2023-03-10",
        }
        payload.update(overrides)
        return cylinder_service.register_cylinder(payload)

    return _make


@pytest.fixture(scope='function')
def empty_cylinders(make_cylinder):
    """Three empty cylinders at the filling station."""
    return [make_cylinder(current_location="filling_station") for _ in range(3)]
