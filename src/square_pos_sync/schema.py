"""
Store schema for synced Square data.

Every table carries the tenant scope columns and a unique constraint on
its natural key, which is the conflict target for upserts.
"""

from dataclasses import dataclass

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

SCHEMA = "pos"

metadata = MetaData(schema=SCHEMA)


def _tenant_columns() -> list[Column]:
    return [
        Column("tenant_id", String(255), nullable=False),
        Column("provider", String(64), nullable=False),
        Column("provider_account_id", String(255), nullable=False),
    ]


def _bookkeeping_columns() -> list[Column]:
    return [
        Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
        Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    ]


pos_locations = Table(
    "pos_locations",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("location_id", String(255), nullable=False),
    Column("location_name", Text, nullable=False),
    Column("address", Text),
    Column("timezone", String(64)),
    Column("status", String(32)),
    Column("raw_payload", Text, nullable=False),
    *_bookkeeping_columns(),
    UniqueConstraint("tenant_id", "provider", "provider_account_id", "location_id",
                     name="uq_pos_locations_key"),
)

pos_categories = Table(
    "pos_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("category_id", String(255), nullable=False),
    Column("category_name", Text, nullable=False),
    Column("parent_category_id", String(255)),
    Column("is_top_level", Boolean, nullable=False, default=True),
    Column("is_deleted", Boolean, nullable=False, default=False),
    Column("raw_payload", Text, nullable=False),
    *_bookkeeping_columns(),
    UniqueConstraint("tenant_id", "provider", "provider_account_id", "category_id",
                     name="uq_pos_categories_key"),
)

pos_catalog = Table(
    "pos_catalog",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("catalog_object_id", String(255), nullable=False),
    Column("object_type", String(32), nullable=False),
    Column("item_name", Text),
    Column("variation_name", Text),
    Column("sku", String(255)),
    Column("category_id", String(255)),
    Column("is_deleted", Boolean, nullable=False, default=False),
    Column("raw_payload", Text, nullable=False),
    *_bookkeeping_columns(),
    UniqueConstraint("tenant_id", "provider", "provider_account_id", "catalog_object_id",
                     name="uq_pos_catalog_key"),
)

pos_inventory = Table(
    "pos_inventory",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("catalog_object_id", String(255), nullable=False),
    Column("catalog_object_type", String(32)),
    # "" when the count has no location, so the natural key never holds NULL
    Column("location_id", String(255), nullable=False),
    Column("state", String(64), nullable=False),
    Column("quantity", Numeric, nullable=False),
    Column("calculated_at", DateTime(timezone=True)),
    Column("raw_payload", Text, nullable=False),
    *_bookkeeping_columns(),
    UniqueConstraint("tenant_id", "provider", "provider_account_id",
                     "catalog_object_id", "location_id", "state",
                     name="uq_pos_inventory_key"),
)

# created_at/updated_at here are Square's timestamps, not bookkeeping
pos_payments = Table(
    "pos_payments",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("payment_id", String(255), nullable=False),
    Column("order_id", String(255)),
    Column("location_id", String(255)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
    Column("amount", BigInteger),
    Column("currency", String(8)),
    Column("status", String(32)),
    Column("customer_id", String(255)),
    Column("reference_id", String(255)),
    Column("raw_payload", Text, nullable=False),
    UniqueConstraint("tenant_id", "provider", "payment_id", name="uq_pos_payments_key"),
)

pos_order_items = Table(
    "pos_order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    *_tenant_columns(),
    Column("order_id", String(255), nullable=False),
    Column("payment_id", String(255)),
    Column("line_item_uid", String(255), nullable=False),
    Column("catalog_object_id", String(255)),
    Column("item_name", Text),
    Column("sku", String(255)),
    Column("quantity", Numeric, nullable=False),
    Column("base_price_amount", BigInteger),
    Column("total_money_amount", BigInteger),
    Column("currency", String(8)),
    Column("location_id", String(255)),
    Column("raw_payload", Text, nullable=False),
    UniqueConstraint("tenant_id", "provider", "order_id", "line_item_uid",
                     name="uq_pos_order_items_key"),
)


@dataclass(frozen=True)
class UpsertSpec:
    """How one entity kind is upserted: target table, conflict key, bookkeeping."""

    entity: str
    table: Table
    conflict_columns: tuple[str, ...]
    refresh_updated_at: bool = True


LOCATIONS = UpsertSpec(
    "locations", pos_locations,
    ("tenant_id", "provider", "provider_account_id", "location_id"),
)
CATEGORIES = UpsertSpec(
    "categories", pos_categories,
    ("tenant_id", "provider", "provider_account_id", "category_id"),
)
CATALOG = UpsertSpec(
    "catalog", pos_catalog,
    ("tenant_id", "provider", "provider_account_id", "catalog_object_id"),
)
INVENTORY = UpsertSpec(
    "inventory", pos_inventory,
    ("tenant_id", "provider", "provider_account_id", "catalog_object_id", "location_id", "state"),
)
# Payment ids are unique per provider, so the account is not part of the key
PAYMENTS = UpsertSpec(
    "payments", pos_payments,
    ("tenant_id", "provider", "payment_id"),
    refresh_updated_at=False,
)
ORDER_ITEMS = UpsertSpec(
    "order_items", pos_order_items,
    ("tenant_id", "provider", "order_id", "line_item_uid"),
    refresh_updated_at=False,
)
