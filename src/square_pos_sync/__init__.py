"""
Square POS Sync

Synchronizes point-of-sale data (locations, categories, catalog,
inventory counts, payments, order line items) from the Square API into a
multi-tenant relational store.

Features:
- Cursor pagination with fixed backoff on rate limits
- Tolerant record-to-row mapping (invalid records are skipped, not fatal)
- Idempotent, tenant-scoped upserts, one transaction per batch

Quick Start:
    export TENANT_ID=acme SQUARE_ACCESS_TOKEN=... DATABASE_URL=postgres://...
    square-pos-sync init-db
    square-pos-sync sync
"""

from square_pos_sync.client import (
    SquareAPIError,
    SquareAuthError,
    SquareClient,
    SquareNotFoundError,
    SquareRateLimitError,
)
from square_pos_sync.config import (
    ConfigError,
    DatabaseConfig,
    SquareConfig,
    SyncConfig,
    TenantScope,
    load_config,
)
from square_pos_sync.row_mapper import (
    CatalogIndex,
    CatalogRow,
    CategoryRow,
    InventoryRow,
    LocationRow,
    OrderItemRow,
    PaymentMappingError,
    PaymentRow,
)
from square_pos_sync.sync import SquarePosSync, SyncResult, TimeWindow, compute_window
from square_pos_sync.writer import UpsertError, UpsertWriter

__version__ = "1.0.0"
__all__ = [
    # Orchestration
    "SquarePosSync",
    "SyncResult",
    "TimeWindow",
    "compute_window",

    # API client
    "SquareClient",
    "SquareAPIError",
    "SquareAuthError",
    "SquareNotFoundError",
    "SquareRateLimitError",

    # Rows
    "CatalogIndex",
    "CatalogRow",
    "CategoryRow",
    "InventoryRow",
    "LocationRow",
    "OrderItemRow",
    "PaymentRow",
    "PaymentMappingError",

    # Persistence
    "UpsertWriter",
    "UpsertError",

    # Configuration
    "ConfigError",
    "DatabaseConfig",
    "SquareConfig",
    "SyncConfig",
    "TenantScope",
    "load_config",
]
