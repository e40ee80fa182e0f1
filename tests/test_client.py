"""
Tests for the Square API client: pagination, rate-limit backoff, errors.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from square_pos_sync.client import (
    SquareAPIError,
    SquareAuthError,
    SquareRateLimitError,
    format_timestamp,
)


def _pages(collection_key, pages):
    """Handler serving ``pages`` (list of record lists) chained by cursors c1, c2, ..."""
    def handler(request: httpx.Request) -> httpx.Response:
        cursor = request.url.params.get("cursor")
        index = 0 if cursor is None else int(cursor[1:])
        payload = {collection_key: pages[index]}
        if index + 1 < len(pages):
            payload["cursor"] = f"c{index + 1}"
        return httpx.Response(200, json=payload)
    return handler


class TestPagination:
    """Cursor pagination returns every page, in order."""

    def test_concatenates_pages_in_order(self, make_client):
        pages = [
            [{"id": "L1"}, {"id": "L2"}],
            [{"id": "L3"}],
            [{"id": "L4"}, {"id": "L5"}],
        ]
        client, transport, _ = make_client(_pages("locations", pages))

        records = client.list_locations()

        assert [r["id"] for r in records] == ["L1", "L2", "L3", "L4", "L5"]
        assert len(transport.requests) == 3
        cursors = [r.url.params.get("cursor") for r in transport.requests]
        assert cursors == [None, "c1", "c2"]

    def test_single_page_without_cursor(self, make_client):
        client, transport, _ = make_client(_pages("locations", [[{"id": "L1"}]]))

        assert client.list_locations() == [{"id": "L1"}]
        assert len(transport.requests) == 1

    def test_non_object_entries_skipped(self, make_client):
        client, _, _ = make_client(_pages("locations", [[{"id": "L1"}, "junk", None, {"id": "L2"}]]))

        assert [r["id"] for r in client.list_locations()] == ["L1", "L2"]

    def test_empty_page_collection(self, make_client):
        def handler(request):
            return httpx.Response(200, json={})

        client, _, _ = make_client(handler)
        assert client.list_categories() == []

    def test_catalog_types_parameter(self, make_client):
        client, transport, _ = make_client(_pages("objects", [[{"id": "I1", "type": "ITEM"}]]))

        client.list_catalog_objects("ITEM,ITEM_VARIATION")
        client.list_categories()

        assert transport.requests[0].url.path == "/v2/catalog/list"
        assert transport.requests[0].url.params["types"] == "ITEM,ITEM_VARIATION"
        assert transport.requests[1].url.params["types"] == "CATEGORY"

    def test_inventory_cursor_in_post_body(self, make_client):
        def handler(request):
            cursor = json.loads(request.content).get("cursor") if request.content else None
            if cursor is None:
                return httpx.Response(200, json={"counts": [{"catalog_object_id": "V1"}], "cursor": "next"})
            return httpx.Response(200, json={"counts": [{"catalog_object_id": "V2"}]})

        client, transport, _ = make_client(handler)

        counts = client.batch_retrieve_inventory_counts()

        assert [c["catalog_object_id"] for c in counts] == ["V1", "V2"]
        assert all(r.method == "POST" for r in transport.requests)
        assert transport.json_bodies() == [{}, {"cursor": "next"}]
        assert "cursor" not in transport.requests[1].url.params

    def test_payments_window_parameters(self, make_client):
        client, transport, _ = make_client(_pages("payments", [[{"id": "P1"}]]))
        begin = datetime(2024, 1, 14, 10, 30, tzinfo=timezone.utc)
        end = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

        client.list_payments(begin, end)

        params = transport.requests[0].url.params
        assert params["begin_time"] == "2024-01-14T10:30:00.000Z"
        assert params["end_time"] == "2024-01-15T10:30:00.000Z"
        assert params["sort_order"] == "ASC"

    def test_auth_and_version_headers(self, make_client):
        client, transport, _ = make_client(_pages("locations", [[]]))

        client.list_locations()

        headers = transport.requests[0].headers
        assert headers["Authorization"] == "Bearer test-access-token"
        assert headers["Square-Version"] == "2025-01-15"


class TestRateLimitBackoff:
    """429 pauses and re-issues the identical request."""

    def test_retry_same_cursor_after_429(self, make_client):
        pages = {None: ([{"id": "P1"}], "c1"), "c1": ([{"id": "P2"}], None)}
        limited = {"c1": 1}

        def handler(request):
            cursor = request.url.params.get("cursor")
            if limited.get(cursor):
                limited[cursor] -= 1
                return httpx.Response(429, text="Too Many Requests")
            records, next_cursor = pages[cursor]
            payload = {"payments": records}
            if next_cursor:
                payload["cursor"] = next_cursor
            return httpx.Response(200, json=payload)

        client, transport, sleeps = make_client(handler)

        records = client.list_payments(datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert [r["id"] for r in records] == ["P1", "P2"]
        cursors = [r.url.params.get("cursor") for r in transport.requests]
        assert cursors == [None, "c1", "c1"]
        assert sleeps == [10.0]
        assert client.get_stats()["rate_limited_count"] == 1

    def test_429_then_200_single_resource(self, make_client, sample_order_data):
        responses = [
            httpx.Response(429, text="slow down"),
            httpx.Response(200, json={"order": sample_order_data}),
        ]

        client, transport, sleeps = make_client(lambda request: responses.pop(0))

        order = client.get_order("O1")

        assert order == sample_order_data
        assert len(transport.requests) == 2
        assert sleeps == [10.0]

    def test_retries_are_bounded(self, make_client):
        client, transport, sleeps = make_client(lambda request: httpx.Response(429, text="busy"))

        with pytest.raises(SquareRateLimitError) as exc_info:
            client.get_order("O1")

        assert exc_info.value.status_code == 429
        assert len(transport.requests) == 3
        assert len(sleeps) == 2

    def test_exhausted_retries_count_as_error(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(429, text="busy"))

        with pytest.raises(SquareRateLimitError):
            client.list_locations()

        stats = client.get_stats()
        assert stats["error_count"] == 1
        assert stats["rate_limited_count"] == 2


class TestErrors:
    """Non-success responses other than 429/404 are fatal and not retried."""

    def test_server_error_carries_status_and_body(self, make_client):
        client, transport, sleeps = make_client(
            lambda request: httpx.Response(500, text='{"errors":[{"code":"INTERNAL_SERVER_ERROR"}]}')
        )

        with pytest.raises(SquareAPIError) as exc_info:
            client.list_locations()

        assert exc_info.value.status_code == 500
        assert "INTERNAL_SERVER_ERROR" in exc_info.value.response_body
        assert "HTTP 500" in str(exc_info.value)
        assert len(transport.requests) == 1
        assert sleeps == []

    def test_auth_error(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(401, text="unauthorized"))

        with pytest.raises(SquareAuthError):
            client.list_locations()

    def test_order_not_found_returns_none(self, make_client):
        client, transport, _ = make_client(lambda request: httpx.Response(404, text="not found"))

        assert client.get_order("missing") is None
        assert transport.requests[0].url.path == "/v2/orders/missing"

    def test_order_response_without_order_returns_none(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(200, json={}))

        assert client.get_order("O1") is None

    def test_list_404_is_fatal(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(404, text="nope"))

        with pytest.raises(SquareAPIError):
            client.list_locations()


class TestHealthCheck:

    def test_healthy(self, make_client):
        client, _, _ = make_client(
            lambda request: httpx.Response(200, json={"merchant": {"id": "M1", "business_name": "Acme"}})
        )
        result = client.health_check()
        assert result["status"] == "healthy"
        assert result["merchant"] == "Acme"

    def test_auth_error(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(403, text="forbidden"))
        assert client.health_check()["status"] == "auth_error"

    def test_server_error(self, make_client):
        client, _, _ = make_client(lambda request: httpx.Response(503, text="unavailable"))
        result = client.health_check()
        assert result["status"] == "error"
        assert "HTTP 503" in result["message"]


def test_format_timestamp_naive_is_utc():
    assert format_timestamp(datetime(2024, 1, 15, 10, 30)) == "2024-01-15T10:30:00.000Z"
