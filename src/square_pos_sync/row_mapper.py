"""
Row Mapper for Square Records

Translates one raw Square record (plus optional context looked up from
other records) into zero or one normalized row. Mapping is fail-open per
record: anything structurally or semantically invalid is logged and
skipped, so one bad record never aborts a batch. The one exception is a
payment without money, which raises PaymentMappingError.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

import structlog
from pydantic import BaseModel, ValidationError

from square_pos_sync.models import (
    SquareCatalogObject,
    SquareInventoryCount,
    SquareLineItem,
    SquareLocation,
    SquareOrder,
    SquarePayment,
)

logger = structlog.get_logger(__name__)


OBJECT_TYPE_ITEM = "ITEM"
OBJECT_TYPE_VARIATION = "ITEM_VARIATION"

DEFAULT_CATEGORY_NAME = "Unknown Category"
DEFAULT_INVENTORY_STATE = "UNKNOWN"
NO_LOCATION = ""


class PaymentMappingError(ValueError):
    """Raised when a payment carries neither ``total_money`` nor ``amount_money``."""
    pass


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Row:
    """Base for normalized rows; tenant columns are added by the writer."""

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LocationRow(Row):
    location_id: str
    location_name: str
    address: str | None
    timezone: str | None
    status: str | None
    raw_payload: str


@dataclass(frozen=True)
class CategoryRow(Row):
    category_id: str
    category_name: str
    parent_category_id: str | None
    is_top_level: bool
    is_deleted: bool
    raw_payload: str


@dataclass(frozen=True)
class CatalogRow(Row):
    catalog_object_id: str
    object_type: str
    item_name: str | None
    variation_name: str | None
    sku: str | None
    category_id: str | None
    is_deleted: bool
    raw_payload: str


@dataclass(frozen=True)
class InventoryRow(Row):
    catalog_object_id: str
    catalog_object_type: str | None
    location_id: str
    state: str
    quantity: Decimal
    calculated_at: datetime | None
    raw_payload: str


@dataclass(frozen=True)
class PaymentRow(Row):
    payment_id: str
    order_id: str | None
    location_id: str | None
    created_at: datetime | None
    updated_at: datetime | None
    amount: int | None
    currency: str | None
    status: str | None
    customer_id: str | None
    reference_id: str | None
    raw_payload: str


@dataclass(frozen=True)
class OrderItemRow(Row):
    order_id: str
    payment_id: str | None
    line_item_uid: str
    catalog_object_id: str | None
    item_name: str | None
    sku: str | None
    quantity: Decimal
    base_price_amount: int | None
    total_money_amount: int | None
    currency: str | None
    location_id: str | None
    raw_payload: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def serialize_payload(raw: Mapping[str, Any]) -> str:
    """Serialize the record exactly as the provider sent it."""
    return json.dumps(raw, default=str)


def parse_quantity(text: str | None, default: str = "0") -> Decimal | None:
    """
    Parse a textual quantity to a finite Decimal.

    Returns None for unparsable, NaN or infinite values.
    """
    raw = default if text is None else text
    try:
        value = Decimal(raw.strip())
    except (InvalidOperation, AttributeError):
        return None
    if not value.is_finite():
        return None
    return value


def _validate(model: type[BaseModel], raw: Any, kind: str) -> Any:
    """Validate ``raw`` against ``model``; None (with a warning) on failure."""
    if not isinstance(raw, Mapping):
        logger.warning("Skipping non-object record", kind=kind, value=str(raw)[:200])
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning(
            "Skipping record that failed validation",
            kind=kind,
            record_id=raw.get("id") or raw.get("uid"),
            errors=e.error_count(),
            detail=str(e)[:500],
        )
        return None


# ---------------------------------------------------------------------------
# Locations & Categories
# ---------------------------------------------------------------------------

def map_location(raw: Mapping[str, Any]) -> LocationRow | None:
    location = _validate(SquareLocation, raw, "location")
    if location is None:
        return None

    if not location.id or not location.name:
        logger.warning("Location without id or name, skipping", location_id=location.id)
        return None

    return LocationRow(
        location_id=location.id,
        location_name=location.name,
        address=location.address.single_line if location.address else None,
        timezone=location.timezone,
        status=location.status,
        raw_payload=serialize_payload(raw),
    )


def map_category(raw: Mapping[str, Any]) -> CategoryRow | None:
    category = _validate(SquareCatalogObject, raw, "category")
    if category is None:
        return None

    if not category.id:
        logger.warning("Category object without id, skipping")
        return None

    data = category.category_data
    name = data.name if data and data.name else DEFAULT_CATEGORY_NAME
    is_top_level = data.is_top_level if data and data.is_top_level is not None else True

    return CategoryRow(
        category_id=category.id,
        category_name=name,
        # Square's parent_category payload carries no id we can rely on yet
        parent_category_id=None,
        is_top_level=is_top_level,
        is_deleted=category.is_deleted is True,
        raw_payload=serialize_payload(raw),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@dataclass
class CatalogIndex:
    """Parent ITEM lookups used to resolve ITEM_VARIATION rows."""

    item_names: dict[str, str] = field(default_factory=dict)
    item_categories: dict[str, str] = field(default_factory=dict)

    def name_for(self, item_id: str | None) -> str | None:
        return self.item_names.get(item_id) if item_id else None

    def category_for(self, item_id: str | None) -> str | None:
        return self.item_categories.get(item_id) if item_id else None


def build_catalog_index(objects: Iterable[Mapping[str, Any]]) -> CatalogIndex:
    """
    Scan every ITEM once and index its name and category by id.

    Must run over the full record set before variations are mapped:
    variations may arrive before their parent item.
    """
    index = CatalogIndex()
    for raw in objects:
        if not isinstance(raw, Mapping) or raw.get("type") != OBJECT_TYPE_ITEM:
            continue
        try:
            obj = SquareCatalogObject.model_validate(raw)
        except ValidationError:
            # Reported when the object itself is mapped
            continue
        if not obj.id or obj.item_data is None:
            continue
        if obj.item_data.name:
            index.item_names[obj.id] = obj.item_data.name
        category_id = obj.item_data.primary_category_id
        if category_id:
            index.item_categories[obj.id] = category_id
    return index


def map_catalog_object(
    raw: Mapping[str, Any],
    index: CatalogIndex,
) -> CatalogRow | None:
    """Map an ITEM or ITEM_VARIATION; other object types yield None."""
    obj = _validate(SquareCatalogObject, raw, "catalog")
    if obj is None:
        return None

    if not obj.id:
        logger.warning("Catalog object without id, skipping", object_type=obj.type)
        return None

    if obj.type == OBJECT_TYPE_ITEM:
        item = obj.item_data
        return CatalogRow(
            catalog_object_id=obj.id,
            object_type=obj.type,
            item_name=item.name if item else None,
            variation_name=None,
            sku=None,
            category_id=item.primary_category_id if item else None,
            is_deleted=obj.is_deleted is True,
            raw_payload=serialize_payload(raw),
        )

    if obj.type == OBJECT_TYPE_VARIATION:
        variation = obj.item_variation_data
        variation_name = variation.name if variation else None
        parent_id = variation.item_id if variation else None

        return CatalogRow(
            catalog_object_id=obj.id,
            object_type=obj.type,
            item_name=index.name_for(parent_id) or variation_name,
            variation_name=variation_name,
            sku=variation.sku if variation else None,
            category_id=index.category_for(parent_id),
            is_deleted=obj.is_deleted is True,
            raw_payload=serialize_payload(raw),
        )

    logger.debug("Ignoring catalog object type", object_type=obj.type, object_id=obj.id)
    return None


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

def map_inventory_count(raw: Mapping[str, Any]) -> InventoryRow | None:
    count = _validate(SquareInventoryCount, raw, "inventory")
    if count is None:
        return None

    if not count.catalog_object_id:
        logger.warning("Inventory count without catalog_object_id, skipping")
        return None

    quantity = parse_quantity(count.quantity)
    if quantity is None:
        logger.warning(
            "Inventory count has invalid quantity, skipping",
            catalog_object_id=count.catalog_object_id,
            quantity=count.quantity,
        )
        return None

    return InventoryRow(
        catalog_object_id=count.catalog_object_id,
        catalog_object_type=count.catalog_object_type,
        location_id=count.location_id or NO_LOCATION,
        state=count.state or DEFAULT_INVENTORY_STATE,
        quantity=quantity,
        calculated_at=count.calculated_at,
        raw_payload=serialize_payload(raw),
    )


# ---------------------------------------------------------------------------
# Payments & Order line items
# ---------------------------------------------------------------------------

def map_payment(raw: Mapping[str, Any]) -> PaymentRow | None:
    """
    Map a payment.

    Raises:
        PaymentMappingError: If the payment has no money fields at all
    """
    payment = _validate(SquarePayment, raw, "payment")
    if payment is None:
        return None

    if not payment.id:
        logger.warning("Payment without id, skipping")
        return None

    money = payment.money
    if money is None:
        raise PaymentMappingError(f"Payment {payment.id} has no money fields")

    for name in ("created_at", "updated_at"):
        if raw.get(name) and getattr(payment, name) is None:
            logger.warning(
                "Payment timestamp unparsable, storing null",
                payment_id=payment.id,
                field=name,
                value=str(raw.get(name))[:100],
            )

    return PaymentRow(
        payment_id=payment.id,
        order_id=payment.order_id,
        location_id=payment.location_id,
        created_at=payment.created_at,
        updated_at=payment.updated_at,
        amount=money.amount,
        currency=money.currency,
        status=payment.status,
        customer_id=payment.customer_id,
        reference_id=payment.reference_id,
        raw_payload=serialize_payload(raw),
    )


def map_line_item(
    raw: Mapping[str, Any],
    order: SquareOrder,
    payment_id: str | None,
) -> OrderItemRow | None:
    """Map one line item of ``order``; quantity must be finite and positive."""
    line = _validate(SquareLineItem, raw, "line_item")
    if line is None:
        return None

    if not order.id:
        logger.warning("Line item on order without id, skipping", uid=line.uid)
        return None

    if not line.uid:
        logger.warning("Line item without uid, skipping", order_id=order.id)
        return None

    quantity = parse_quantity(line.quantity)
    if quantity is None or quantity <= 0:
        logger.warning(
            "Line item has invalid quantity, skipping",
            order_id=order.id,
            uid=line.uid,
            quantity=line.quantity,
        )
        return None

    return OrderItemRow(
        order_id=order.id,
        payment_id=payment_id,
        line_item_uid=line.uid,
        catalog_object_id=line.catalog_object_id,
        item_name=line.name,
        sku=None,  # Not on the line item; join against pos_catalog for it
        quantity=quantity,
        base_price_amount=line.base_price_money.amount if line.base_price_money else None,
        total_money_amount=line.total_money.amount if line.total_money else None,
        currency=line.currency,
        location_id=order.location_id,
        raw_payload=serialize_payload(raw),
    )
