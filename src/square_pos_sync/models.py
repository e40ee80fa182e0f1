"""
Pydantic models for Square API records.

These models give the row mapper type-safe access to the fields it
needs. They are deliberately tolerant: every field is optional and
unknown fields are kept, so a payload that gains new keys still parses.
The raw dict, not the model, is what gets stored as ``raw_payload``.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator


class SquareModel(BaseModel):
    """Base for all Square payload models."""

    model_config = ConfigDict(extra="allow")


_DATETIME = TypeAdapter(datetime)


def _lenient_datetime(v: Any) -> Any:
    """Unparsable timestamps become None instead of failing the record."""
    if v is None or isinstance(v, datetime):
        return v
    try:
        return _DATETIME.validate_python(v)
    except ValidationError:
        return None


def _quantity_to_text(v: Any) -> Any:
    """Square sends quantities as strings; accept bare numbers too."""
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)):
        return str(v)
    return v


class SquareMoney(SquareModel):
    """Amount in the smallest currency unit (e.g. cents)."""

    amount: int | None = None
    currency: str | None = None


# ---------------------------------------------------------------------------
# Locations
# ---------------------------------------------------------------------------

class SquareAddress(SquareModel):
    address_line_1: str | None = None
    address_line_2: str | None = None
    locality: str | None = None
    administrative_district_level_1: str | None = None
    postal_code: str | None = None
    country: str | None = None

    @property
    def single_line(self) -> str | None:
        """Join the non-blank parts with ", "; None when nothing is left."""
        parts = [
            self.address_line_1,
            self.locality,
            self.administrative_district_level_1,
            self.postal_code,
        ]
        joined = ", ".join(p.strip() for p in parts if p and p.strip())
        return joined or None


class SquareLocation(SquareModel):
    id: str | None = None
    name: str | None = None
    address: SquareAddress | None = None
    timezone: str | None = None
    status: str | None = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class SquareCategoryRef(SquareModel):
    id: str | None = None
    ordinal: int | None = None


class SquareItemData(SquareModel):
    name: str | None = None
    category_id: str | None = None
    categories: list[SquareCategoryRef] = Field(default_factory=list)

    @property
    def primary_category_id(self) -> str | None:
        """Legacy ``category_id`` first, then the first entry of ``categories``."""
        if self.category_id:
            return self.category_id
        for ref in self.categories:
            if ref.id:
                return ref.id
        return None


class SquareItemVariationData(SquareModel):
    name: str | None = None
    sku: str | None = None
    item_id: str | None = None


class SquareCategoryData(SquareModel):
    name: str | None = None
    is_top_level: bool | None = None
    parent_category: dict[str, Any] | None = None


class SquareCatalogObject(SquareModel):
    """A CatalogObject of any type; only the matching ``*_data`` is set."""

    id: str | None = None
    type: str | None = None
    is_deleted: bool | None = None
    item_data: SquareItemData | None = None
    item_variation_data: SquareItemVariationData | None = None
    category_data: SquareCategoryData | None = None


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

class SquareInventoryCount(SquareModel):
    catalog_object_id: str | None = None
    catalog_object_type: str | None = None
    state: str | None = None
    location_id: str | None = None
    quantity: str | None = None
    calculated_at: datetime | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def normalize_quantity(cls, v: Any) -> Any:
        return _quantity_to_text(v)


# ---------------------------------------------------------------------------
# Payments & Orders
# ---------------------------------------------------------------------------

class SquarePayment(SquareModel):
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    location_id: str | None = None
    order_id: str | None = None
    status: str | None = None
    customer_id: str | None = None
    reference_id: str | None = None
    amount_money: SquareMoney | None = None
    total_money: SquareMoney | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Any:
        return _lenient_datetime(v)

    @property
    def money(self) -> SquareMoney | None:
        """``total_money`` when present, otherwise ``amount_money``."""
        return self.total_money or self.amount_money


class SquareLineItem(SquareModel):
    uid: str | None = None
    name: str | None = None
    catalog_object_id: str | None = None
    quantity: str | None = None
    base_price_money: SquareMoney | None = None
    total_money: SquareMoney | None = None

    @field_validator("quantity", mode="before")
    @classmethod
    def normalize_quantity(cls, v: Any) -> Any:
        return _quantity_to_text(v)

    @property
    def currency(self) -> str | None:
        if self.base_price_money and self.base_price_money.currency:
            return self.base_price_money.currency
        if self.total_money and self.total_money.currency:
            return self.total_money.currency
        return None


class SquareOrder(SquareModel):
    id: str | None = None
    location_id: str | None = None
    # Kept raw: each line item's own dict is stored as its raw_payload
    line_items: list[Any] | None = None
