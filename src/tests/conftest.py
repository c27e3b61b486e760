"""Pytest configuration and fixtures for service layer tests."""

from datetime import date, timedelta

import pytest
from sqlalchemy.orm import sessionmaker, scoped_session

from bakehouse.models.base import Base
from bakehouse.services.database import create_database_engine, init_database
from bakehouse.services.order_intake_service import OrderLineRequest, OrderRequest
from bakehouse.utils.datetime_utils import utc_now


def _patch_session_factory(factory):
    import bakehouse.services.database as db_module

    original = db_module.get_session_factory
    db_module.get_session_factory = lambda: factory
    return db_module, original


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean in-memory database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Points session_scope() at it
    4. Drops all tables after the test completes
    """
    engine = create_database_engine("sqlite:///:memory:")
    init_database(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    db_module, original = _patch_session_factory(Session)

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()
    db_module.get_session_factory = original


@pytest.fixture(scope="function")
def file_db(tmp_path):
    """File-backed database with one connection per session, for threaded tests."""
    engine = create_database_engine(f"sqlite:///{tmp_path / 'bakehouse-test.db'}")
    init_database(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    db_module, original = _patch_session_factory(session_factory)

    yield session_factory

    engine.dispose()
    db_module.get_session_factory = original


# ============================================================================
# Sample data
# ============================================================================


def _sample_location():
    from bakehouse.services import location_service

    return location_service.create_location(
        {"name": "Farmers Market", "address": "12 Main St"}
    )


def _sample_flavor(name="Honey Oat"):
    from bakehouse.services import flavor_service

    return flavor_service.create_flavor(
        {
            "name": name,
            "sizes": [
                {"name": "Regular", "price": "12.00"},
                {"name": "Mini", "price": "6.50"},
            ],
        }
    )


def _sample_slot(location, capacity=10, days_ahead=10):
    from bakehouse.services import bake_slot_service

    return bake_slot_service.create_slot(
        {
            "date": date.today() + timedelta(days=days_ahead),
            "location_id": location.id,
            "total_capacity": capacity,
        }
    )


@pytest.fixture
def sample_location(test_db):
    """A pickup location."""
    return _sample_location()


@pytest.fixture
def sample_flavor(test_db):
    """A year-round flavor with Regular ($12.00) and Mini ($6.50) sizes."""
    return _sample_flavor()


@pytest.fixture
def sample_slot(test_db, sample_location):
    """An open slot ten days out with capacity 10."""
    return _sample_slot(sample_location)


@pytest.fixture
def sample_recipe(test_db, sample_flavor):
    """Active recipe for sample_flavor: one loaf per batch, 16 oz flour."""
    from bakehouse.services import recipe_service

    return recipe_service.create_recipe(
        {
            "name": "Honey Oat Loaf",
            "flavor_id": sample_flavor.id,
            "yields_loaves": 1,
            "base_ingredients": [
                {"name": "Flour", "quantity": 16, "unit": "oz", "cost_per_unit": 0.05},
                {"name": "Honey", "quantity": 2, "unit": "oz", "cost_per_unit": 0.25},
            ],
        }
    )


@pytest.fixture
def make_request():
    """Factory for order requests against a slot and flavor."""

    def _make(slot_id, flavor_id, quantity=1, email="ada@example.com", size="Regular", **extra):
        return OrderRequest(
            bake_slot_id=slot_id,
            items=[OrderLineRequest(flavor_id=flavor_id, size=size, quantity=quantity)],
            first_name="Ada",
            last_name="Baker",
            email=email,
            **extra,
        )

    return _make


@pytest.fixture
def file_catalog(file_db):
    """Location, flavor and a capacity-10 slot in the file database."""
    location = _sample_location()
    flavor = _sample_flavor()
    slot = _sample_slot(location)
    return location, flavor, slot


@pytest.fixture
def now():
    return utc_now()
