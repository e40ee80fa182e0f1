"""
Pytest configuration and fixtures for Square POS sync tests.
"""

import json

import httpx
import pytest
from sqlalchemy.pool import StaticPool

from square_pos_sync.client import SquareClient
from square_pos_sync.config import DatabaseConfig, SquareConfig, TenantScope
from square_pos_sync.db import create_db_engine, ensure_schema
from square_pos_sync.writer import UpsertWriter


@pytest.fixture
def sample_location_data():
    """Sample location from GET /v2/locations."""
    return {
        "id": "L1",
        "name": "Downtown Cafe",
        "address": {
            "address_line_1": "1 Main St",
            "locality": "Springfield",
            "postal_code": "12345",
            "country": "US",
        },
        "timezone": "America/Chicago",
        "status": "ACTIVE",
        "capabilities": ["CREDIT_CARD_PROCESSING"],
    }


@pytest.fixture
def sample_category_data():
    """Sample CATEGORY catalog object."""
    return {
        "id": "C1",
        "type": "CATEGORY",
        "is_deleted": False,
        "category_data": {
            "name": "Coffee",
            "is_top_level": True,
        },
    }


@pytest.fixture
def sample_item_data():
    """Sample ITEM catalog object."""
    return {
        "id": "I1",
        "type": "ITEM",
        "is_deleted": False,
        "item_data": {
            "name": "Latte",
            "category_id": "C1",
        },
    }


@pytest.fixture
def sample_variation_data():
    """Sample ITEM_VARIATION catalog object belonging to I1."""
    return {
        "id": "V1",
        "type": "ITEM_VARIATION",
        "is_deleted": False,
        "item_variation_data": {
            "item_id": "I1",
            "name": "Large",
            "sku": "SKU1",
            "price_money": {"amount": 450, "currency": "USD"},
        },
    }


@pytest.fixture
def sample_inventory_data():
    """Sample inventory count from batch-retrieve."""
    return {
        "catalog_object_id": "V1",
        "catalog_object_type": "ITEM_VARIATION",
        "state": "IN_STOCK",
        "location_id": "L1",
        "quantity": "12.5",
        "calculated_at": "2024-01-15T10:30:00.000Z",
    }


@pytest.fixture
def sample_payment_data():
    """Sample payment from GET /v2/payments."""
    return {
        "id": "P1",
        "created_at": "2024-01-15T10:30:00.000Z",
        "updated_at": "2024-01-15T10:31:00.000Z",
        "location_id": "L1",
        "order_id": "O1",
        "status": "COMPLETED",
        "customer_id": "CUST1",
        "reference_id": "REF1",
        "amount_money": {"amount": 900, "currency": "USD"},
        "total_money": {"amount": 1000, "currency": "USD"},
    }


@pytest.fixture
def sample_order_data():
    """Sample order from GET /v2/orders/{id} with two line items."""
    return {
        "id": "O1",
        "location_id": "L1",
        "line_items": [
            {
                "uid": "LI1",
                "name": "Latte",
                "catalog_object_id": "V1",
                "quantity": "2",
                "base_price_money": {"amount": 450, "currency": "USD"},
                "total_money": {"amount": 900, "currency": "USD"},
            },
            {
                "uid": "LI2",
                "name": "Croissant",
                "quantity": "1",
                "total_money": {"amount": 300, "currency": "USD"},
            },
        ],
    }


@pytest.fixture
def tenant():
    return TenantScope(tenant_id="tenant-1", provider="square", provider_account_id="acct-1")


@pytest.fixture
def engine():
    """In-memory SQLite store with the pos tables created."""
    engine = create_db_engine(
        DatabaseConfig(url="sqlite://", schema=""),
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    ensure_schema(engine, None)
    yield engine
    engine.dispose()


@pytest.fixture
def writer(engine, tenant):
    return UpsertWriter(engine, tenant)


@pytest.fixture
def square_config():
    return SquareConfig(
        access_token="test-access-token",
        api_version="2025-01-15",
        rate_limit_backoff=10.0,
        max_rate_limit_retries=3,
    )


class RecordingTransport:
    """Wraps a handler; records every request it serves."""

    def __init__(self, handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def json_bodies(self) -> list[dict]:
        return [json.loads(r.content) if r.content else {} for r in self.requests]


@pytest.fixture
def make_client(square_config):
    """Build a SquareClient backed by a MockTransport; returns (client, transport, sleeps)."""
    clients = []

    def _make(handler, config=None):
        recorder = RecordingTransport(handler)
        sleeps: list[float] = []
        client = SquareClient(
            config or square_config,
            transport=httpx.MockTransport(recorder),
            sleep=sleeps.append,
        )
        clients.append(client)
        return client, recorder, sleeps

    yield _make

    for client in clients:
        client.close()
