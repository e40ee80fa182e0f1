"""
Square API Client

Synchronous HTTP client with:
- Cursor pagination that returns every page, in order
- Fixed backoff on 429, re-issuing the identical request (bounded attempts)
- Typed errors carrying status code and response body
- Request counters for observability

The client does no data shaping: records come back as the raw dicts
Square returned. Interpretation belongs to the row mapper.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from square_pos_sync.config import SquareConfig

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class SquareAPIError(Exception):
    """Base exception for Square API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            base = f"{base} (HTTP {self.status_code})"
        if self.response_body:
            base = f"{base}: {self.response_body}"
        return base


class SquareRateLimitError(SquareAPIError):
    """Raised on 429. Retried with backoff; surfaces only when attempts run out."""
    pass


class SquareAuthError(SquareAPIError):
    """Raised when authentication fails (401/403)."""
    pass


class SquareNotFoundError(SquareAPIError):
    """Raised when a resource is not found (404)."""
    pass


def format_timestamp(value: datetime) -> str:
    """Render an instant as ISO-8601 UTC with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class SquareClient:
    """
    Square API client.

    Example:
        client = SquareClient(SquareConfig(access_token="..."))

        with client:
            for payment in client.list_payments(begin, end):
                print(payment["id"])
    """

    USER_AGENT = "square-pos-sync/1.0"

    def __init__(
        self,
        config: SquareConfig,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the client.

        Args:
            config: Credentials, API version and backoff settings
            transport: Optional httpx transport (tests use httpx.MockTransport)
            sleep: Function used to wait out a rate limit
        """
        if not config.access_token:
            raise ValueError("Square access token is required")

        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.Client | None = None

        self._request_count = 0
        self._error_count = 0
        self._rate_limited_count = 0

        self._log = logger.bind(api_version=config.api_version)

    def _build_client(self) -> httpx.Client:
        return httpx.Client(
            base_url=self.base_url,
            timeout=self.config.timeout,
            transport=self._transport,
            headers={
                "Authorization": f"Bearer {self.config.access_token}",
                "Square-Version": self.config.api_version,
                "Content-Type": "application/json",
                "User-Agent": self.USER_AGENT,
            },
        )

    def __enter__(self) -> "SquareClient":
        self._client = self._build_client()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    @property
    def client(self) -> httpx.Client:
        """Get HTTP client, creating if needed."""
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        self._rate_limited_count += 1
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        self._log.warning(
            "Rate limited by Square, backing off",
            attempt=retry_state.attempt_number,
            wait_seconds=wait,
        )

    def _make_request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Issue one request, retrying the identical request on 429 only.

        Every other non-success status raises immediately.
        """
        log = self._log.bind(path=path, method=method)

        retrying = Retrying(
            retry=retry_if_exception_type(SquareRateLimitError),
            stop=stop_after_attempt(self.config.max_rate_limit_retries),
            wait=wait_fixed(self.config.rate_limit_backoff),
            before_sleep=self._log_backoff,
            sleep=self._sleep,
            reraise=True,
        )

        def _do_request() -> dict[str, Any]:
            self._request_count += 1
            request_id = self._request_count

            log.debug("API request", request_id=request_id, params=params)

            start_time = time.monotonic()
            response = self.client.request(method, path, params=params, json=body)
            elapsed = time.monotonic() - start_time

            log.debug(
                "API response",
                request_id=request_id,
                status_code=response.status_code,
                elapsed_ms=round(elapsed * 1000),
            )

            if response.status_code == 429:
                raise SquareRateLimitError(
                    "Rate limit exceeded",
                    status_code=429,
                    response_body=response.text[:500],
                )

            if response.status_code in (401, 403):
                self._error_count += 1
                raise SquareAuthError(
                    "Authentication failed - check SQUARE_ACCESS_TOKEN",
                    status_code=response.status_code,
                    response_body=response.text[:500],
                )

            if response.status_code == 404:
                raise SquareNotFoundError(
                    f"Resource not found: {path}",
                    status_code=404,
                    response_body=response.text[:500],
                )

            if not response.is_success:
                self._error_count += 1
                raise SquareAPIError(
                    f"Square request {method} {path} failed",
                    status_code=response.status_code,
                    response_body=response.text[:2000],
                )

            try:
                data = response.json()
            except ValueError as e:
                self._error_count += 1
                raise SquareAPIError(f"Invalid JSON response from {path}: {e}")

            if not isinstance(data, dict):
                self._error_count += 1
                raise SquareAPIError(f"Unexpected payload from {path}: {str(data)[:200]}")
            return data

        try:
            return retrying(_do_request)
        except SquareRateLimitError:
            self._error_count += 1
            log.error(
                "Rate limit retries exhausted",
                attempts=self.config.max_rate_limit_retries,
            )
            raise

    def _paginate(
        self,
        method: str,
        path: str,
        collection_key: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """
        Fetch every page of a cursor-paginated endpoint.

        GET endpoints carry the cursor as a query parameter, POST endpoints
        carry it in the JSON body. Stops when a page comes back without a cursor.
        """
        records: list[dict[str, Any]] = []
        cursor: str | None = None
        page = 0

        while True:
            page += 1
            page_params = dict(params or {})
            page_body = dict(body or {}) if method == "POST" else None
            if cursor:
                if page_body is not None:
                    page_body["cursor"] = cursor
                else:
                    page_params["cursor"] = cursor

            data = self._make_request(method, path, params=page_params or None, body=page_body)

            items = data.get(collection_key) or []
            for item in items:
                if isinstance(item, dict):
                    records.append(item)
                else:
                    self._log.warning(
                        "Skipping non-object entry in page",
                        path=path,
                        page=page,
                        value=str(item)[:200],
                    )

            self._log.info(
                "Fetched page",
                path=path,
                page=page,
                count=len(items),
                total=len(records),
            )

            cursor = data.get("cursor") or None
            if not cursor:
                break

        return records

    # -------------------------------------------------------------------------
    # Locations
    # -------------------------------------------------------------------------

    def list_locations(self) -> list[dict[str, Any]]:
        """Get all locations for the account."""
        return self._paginate("GET", "/v2/locations", "locations")

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def list_catalog_objects(self, types: str = "ITEM,ITEM_VARIATION") -> list[dict[str, Any]]:
        """
        Get all catalog objects of the given comma-separated types.

        Items and variations are requested together so variations can be
        resolved against their parent item.
        """
        return self._paginate("GET", "/v2/catalog/list", "objects", params={"types": types})

    def list_categories(self) -> list[dict[str, Any]]:
        """Get all CATEGORY catalog objects."""
        return self.list_catalog_objects("CATEGORY")

    # -------------------------------------------------------------------------
    # Inventory
    # -------------------------------------------------------------------------

    def batch_retrieve_inventory_counts(self) -> list[dict[str, Any]]:
        """Get inventory counts for every catalog object at every location."""
        return self._paginate(
            "POST",
            "/v2/inventory/counts/batch-retrieve",
            "counts",
            body={},
        )

    # -------------------------------------------------------------------------
    # Payments & Orders
    # -------------------------------------------------------------------------

    def list_payments(
        self,
        begin: datetime,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Get all payments created in ``[begin, end)``, oldest first."""
        params: dict[str, Any] = {
            "begin_time": format_timestamp(begin),
            "sort_order": "ASC",
        }
        if end is not None:
            params["end_time"] = format_timestamp(end)

        return self._paginate("GET", "/v2/payments", "payments", params=params)

    def get_order(self, order_id: str) -> dict[str, Any] | None:
        """
        Get a single order by ID.

        Returns None when Square does not know the order, so callers can
        skip it.
        """
        try:
            data = self._make_request("GET", f"/v2/orders/{order_id}")
        except SquareNotFoundError:
            self._log.warning("Order not found in Square", order_id=order_id)
            return None

        order = data.get("order")
        if not isinstance(order, dict):
            self._log.warning("Order response had no 'order' object", order_id=order_id)
            return None
        return order

    # -------------------------------------------------------------------------
    # Observability
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get client statistics for monitoring."""
        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "rate_limited_count": self._rate_limited_count,
            "error_rate": round(self._error_count / max(1, self._request_count), 4),
        }

    def health_check(self) -> dict[str, Any]:
        """Verify API connectivity and credentials."""
        try:
            data = self._make_request("GET", "/v2/merchants/me")
            merchant = data.get("merchant") or {}
            return {
                "status": "healthy",
                "merchant": merchant.get("business_name", "unknown"),
                "merchant_id": merchant.get("id"),
            }
        except SquareAuthError:
            return {"status": "auth_error", "message": "Invalid access token"}
        except (SquareAPIError, httpx.HTTPError) as e:
            return {"status": "error", "message": str(e)}
