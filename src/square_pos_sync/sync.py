"""
Square POS Sync Orchestrator

Drives one entity kind at a time through the same linear pipeline:

    fetch (optionally time-windowed) -> build lookups -> map -> upsert

Fetching completes before mapping starts, and mapping completes before
the write transaction opens. Entity kinds are independent: each batch is
its own transaction, so a failure leaves earlier kinds committed.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import structlog
from pydantic import ValidationError

from square_pos_sync.client import SquareClient
from square_pos_sync.models import SquareOrder
from square_pos_sync.row_mapper import (
    OrderItemRow,
    build_catalog_index,
    map_catalog_object,
    map_category,
    map_inventory_count,
    map_line_item,
    map_location,
    map_payment,
)
from square_pos_sync.writer import UpsertWriter

logger = structlog.get_logger(__name__)


ENTITY_LOCATIONS = "locations"
ENTITY_CATEGORIES = "categories"
ENTITY_CATALOG = "catalog"
ENTITY_INVENTORY = "inventory"
ENTITY_PAYMENTS = "payments"
ENTITY_ORDERS = "orders"

ALL_ENTITIES = (
    ENTITY_LOCATIONS,
    ENTITY_CATEGORIES,
    ENTITY_CATALOG,
    ENTITY_INVENTORY,
    ENTITY_PAYMENTS,
    ENTITY_ORDERS,
)


@dataclass(frozen=True)
class TimeWindow:
    """Half-open fetch window ``[begin, end)``."""
    begin: datetime
    end: datetime


@dataclass
class SyncResult:
    """Outcome of one entity sync."""
    entity: str
    fetched: int = 0
    prepared: int = 0
    written: int = 0

    @property
    def skipped(self) -> int:
        return self.fetched - self.prepared

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "fetched": self.fetched,
            "prepared": self.prepared,
            "skipped": self.skipped,
            "written": self.written,
        }


def compute_window(lookback: timedelta, now: datetime | None = None) -> TimeWindow:
    """Window covering the trailing ``lookback`` up to ``now`` (UTC)."""
    end = now or datetime.now(timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    return TimeWindow(begin=end - lookback, end=end)


class SquarePosSync:
    """
    Syncs Square entities into the store for one tenant.

    Example:
        with SquareClient(config.square) as client:
            sync = SquarePosSync(client, UpsertWriter(engine, config.tenant))
            sync.run(["locations", "payments"])
    """

    def __init__(
        self,
        client: SquareClient,
        writer: UpsertWriter,
        lookback: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Square API client
            writer: Tenant-scoped upsert writer
            lookback: Trailing window for payments and orders
            clock: Returns "now"; injectable for tests
        """
        self.client = client
        self.writer = writer
        self.lookback = lookback
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._handlers: dict[str, Callable[[], SyncResult]] = {
            ENTITY_LOCATIONS: self.sync_locations,
            ENTITY_CATEGORIES: self.sync_categories,
            ENTITY_CATALOG: self.sync_catalog,
            ENTITY_INVENTORY: self.sync_inventory,
            ENTITY_PAYMENTS: self.sync_payments,
            ENTITY_ORDERS: self.sync_orders,
        }

    def window(self) -> TimeWindow:
        return compute_window(self.lookback, self._clock())

    # -------------------------------------------------------------------------
    # Entity syncs
    # -------------------------------------------------------------------------

    def sync_locations(self) -> SyncResult:
        log = logger.bind(entity=ENTITY_LOCATIONS)
        log.info("Fetching locations")
        records = self.client.list_locations()

        rows = [row for row in map(map_location, records) if row is not None]
        log.info("Prepared rows", fetched=len(records), prepared=len(rows))

        written = self.writer.upsert_locations(rows)
        return SyncResult(ENTITY_LOCATIONS, len(records), len(rows), written)

    def sync_categories(self) -> SyncResult:
        log = logger.bind(entity=ENTITY_CATEGORIES)
        log.info("Fetching categories")
        records = self.client.list_categories()

        rows = [row for row in map(map_category, records) if row is not None]
        log.info("Prepared rows", fetched=len(records), prepared=len(rows))

        written = self.writer.upsert_categories(rows)
        return SyncResult(ENTITY_CATEGORIES, len(records), len(rows), written)

    def sync_catalog(self) -> SyncResult:
        log = logger.bind(entity=ENTITY_CATALOG)
        log.info("Fetching catalog items and variations")
        records = self.client.list_catalog_objects("ITEM,ITEM_VARIATION")

        # Parents first: variations can precede their item in the listing
        index = build_catalog_index(records)
        log.info(
            "Built catalog index",
            items_with_name=len(index.item_names),
            items_with_category=len(index.item_categories),
        )

        rows = []
        for raw in records:
            row = map_catalog_object(raw, index)
            if row is not None:
                rows.append(row)
        log.info("Prepared rows", fetched=len(records), prepared=len(rows))

        written = self.writer.upsert_catalog(rows)
        return SyncResult(ENTITY_CATALOG, len(records), len(rows), written)

    def sync_inventory(self) -> SyncResult:
        log = logger.bind(entity=ENTITY_INVENTORY)
        log.info("Fetching inventory counts")
        records = self.client.batch_retrieve_inventory_counts()

        rows = [row for row in map(map_inventory_count, records) if row is not None]
        log.info("Prepared rows", fetched=len(records), prepared=len(rows))

        written = self.writer.upsert_inventory(rows)
        return SyncResult(ENTITY_INVENTORY, len(records), len(rows), written)

    def sync_payments(self) -> SyncResult:
        """
        Sync payments created in the lookback window.

        A payment without money raises PaymentMappingError and aborts
        this run before anything is written.
        """
        window = self.window()
        log = logger.bind(entity=ENTITY_PAYMENTS)
        log.info("Fetching payments", begin=window.begin.isoformat(), end=window.end.isoformat())
        records = self.client.list_payments(window.begin, window.end)

        rows = [row for row in map(map_payment, records) if row is not None]
        log.info("Prepared rows", fetched=len(records), prepared=len(rows))

        written = self.writer.upsert_payments(rows)
        return SyncResult(ENTITY_PAYMENTS, len(records), len(rows), written)

    def sync_orders(self) -> SyncResult:
        """
        Sync order line items for orders paid within the lookback window.

        Payments are fetched fresh to find the orders; each distinct order
        is then fetched once and its line items flattened into rows.
        ``fetched`` counts line items seen.
        """
        window = self.window()
        log = logger.bind(entity=ENTITY_ORDERS)
        log.info(
            "Fetching payments for orders",
            begin=window.begin.isoformat(),
            end=window.end.isoformat(),
        )
        payments = self.client.list_payments(window.begin, window.end)

        order_to_payment = first_payment_by_order(payments)
        log.info("Found orders with payments", payments=len(payments), orders=len(order_to_payment))

        rows: list[OrderItemRow] = []
        line_items_seen = 0

        for order_id, payment_id in order_to_payment.items():
            raw_order = self.client.get_order(order_id)
            if raw_order is None:
                continue

            try:
                order = SquareOrder.model_validate(raw_order)
            except ValidationError as e:
                log.warning("Skipping order that failed validation", order_id=order_id, detail=str(e)[:500])
                continue

            line_items = order.line_items or []
            if not line_items:
                log.info("Order has no line items, skipping", order_id=order_id)
                continue

            for raw_line in line_items:
                line_items_seen += 1
                row = map_line_item(raw_line, order, payment_id)
                if row is not None:
                    rows.append(row)

        log.info("Prepared rows", fetched=line_items_seen, prepared=len(rows))

        written = self.writer.upsert_order_items(rows)
        return SyncResult(ENTITY_ORDERS, line_items_seen, len(rows), written)

    # -------------------------------------------------------------------------
    # Runner
    # -------------------------------------------------------------------------

    def run(self, entities: Iterable[str] = ALL_ENTITIES) -> list[SyncResult]:
        """
        Run the selected entity syncs in order.

        Stops at the first failure; kinds already written stay committed.
        """
        selected = list(entities)
        unknown = [e for e in selected if e not in self._handlers]
        if unknown:
            raise ValueError(f"Unknown entities: {', '.join(unknown)}")

        results = []
        for entity in selected:
            result = self._handlers[entity]()
            logger.info("Entity sync complete", **result.to_dict())
            results.append(result)
        return results


def first_payment_by_order(payments: Iterable[dict[str, Any]]) -> dict[str, str]:
    """
    Map order id -> id of the first payment seen for it, in fetch order.

    Insertion order is preserved, so orders are later fetched in the order
    their first payment appeared.
    """
    order_to_payment: dict[str, str] = {}
    for payment in payments:
        order_id = payment.get("order_id")
        payment_id = payment.get("id")
        if order_id and payment_id and order_id not in order_to_payment:
            order_to_payment[order_id] = payment_id
    return order_to_payment
