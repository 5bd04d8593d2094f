import pytest
from fastapi.testclient import TestClient

from database import MemoryEntityStore, get_store
from schemas import Actor


@pytest.fixture
def store():
    return MemoryEntityStore()


@pytest.fixture
def loose_store():
    """A store without atomic batches, exercising the compensating path."""
    return MemoryEntityStore(atomic_batches=False)


@pytest.fixture
def owner():
    return Actor(uid="cust-1", user_type="customer")


@pytest.fixture
def other_customer():
    return Actor(uid="cust-2", user_type="customer")


@pytest.fixture
def contractor_a():
    return Actor(uid="con-a", user_type="contractor")


@pytest.fixture
def contractor_b():
    return Actor(uid="con-b", user_type="contractor")


@pytest.fixture
def project_fields():
    return {
        "title": "Residential House Construction",
        "description": "Two storey house on a 1200 sq ft plot",
        "category": ["construction", "residential", "construction"],
        "budget": 500000,
        "location": "Pune",
        "startDate": "2026-12-01",
        "expectedDuration": "6 months",
    }


@pytest.fixture
def bid_fields():
    return {
        "priceQuoted": 480000,
        "timeline": "3 months",
        "message": "Experienced team, 10 years in residential work",
    }


@pytest.fixture
def client(store):
    from main import app

    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
