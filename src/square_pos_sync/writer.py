"""
Upsert Writer

Persists a batch of rows for one entity kind in a single transaction.
Each row is an ``INSERT ... ON CONFLICT (natural key) DO UPDATE`` that
overwrites every non-key column, so re-running a batch is idempotent.
Any failing row rolls back the whole batch.
"""

from collections.abc import Sequence
from typing import Any

import structlog
from sqlalchemy import Table, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from square_pos_sync import schema
from square_pos_sync.config import TenantScope
from square_pos_sync.row_mapper import (
    CatalogRow,
    CategoryRow,
    InventoryRow,
    LocationRow,
    OrderItemRow,
    PaymentRow,
    Row,
)
from square_pos_sync.schema import UpsertSpec

logger = structlog.get_logger(__name__)


class UpsertError(Exception):
    """Raised when a batch fails to persist; nothing from the batch was committed."""

    def __init__(self, entity: str, row_index: int | None, cause: BaseException):
        super().__init__(f"Upsert of {entity} failed at row {row_index}: {cause}")
        self.entity = entity
        self.row_index = row_index
        self.cause = cause


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def build_upsert(dialect_name: str, spec: UpsertSpec, values: dict[str, Any]) -> Any:
    """Build the ON CONFLICT statement for one row."""
    insert = _DIALECT_INSERTS.get(dialect_name)
    if insert is None:
        raise ValueError(f"Upsert is not supported for dialect '{dialect_name}'")

    table: Table = spec.table
    stmt = insert(table).values(**values)

    set_: dict[str, Any] = {
        column: stmt.excluded[column]
        for column in values
        if column not in spec.conflict_columns
    }
    if spec.refresh_updated_at:
        set_["updated_at"] = func.now()

    return stmt.on_conflict_do_update(
        index_elements=list(spec.conflict_columns),
        set_=set_,
    )


class UpsertWriter:
    """
    Tenant-scoped upsert writer.

    Example:
        writer = UpsertWriter(engine, TenantScope(tenant_id="t1"))
        writer.upsert_locations(rows)
    """

    def __init__(self, engine: Engine, tenant: TenantScope):
        self.engine = engine
        self.tenant = tenant
        self._log = logger.bind(
            tenant_id=tenant.tenant_id,
            provider=tenant.provider,
            provider_account_id=tenant.provider_account_id,
        )

    def upsert(self, spec: UpsertSpec, rows: Sequence[Row]) -> int:
        """
        Persist ``rows`` atomically.

        Returns:
            Number of rows written (0 for an empty batch)

        Raises:
            UpsertError: If any row fails; the transaction is rolled back
        """
        log = self._log.bind(entity=spec.entity)

        if not rows:
            log.info("Nothing to upsert")
            return 0

        tenant_columns = self.tenant.as_columns()
        row_index: int | None = None

        try:
            with self.engine.begin() as conn:
                dialect_name = conn.dialect.name
                for row_index, row in enumerate(rows):
                    values = {**tenant_columns, **row.as_dict()}
                    conn.execute(build_upsert(dialect_name, spec, values))
        except SQLAlchemyError as e:
            log.error(
                "Upsert failed, batch rolled back",
                row_index=row_index,
                batch_size=len(rows),
                error=str(e),
            )
            raise UpsertError(spec.entity, row_index, e) from e

        log.info("Upserted rows", count=len(rows))
        return len(rows)

    def upsert_locations(self, rows: Sequence[LocationRow]) -> int:
        return self.upsert(schema.LOCATIONS, rows)

    def upsert_categories(self, rows: Sequence[CategoryRow]) -> int:
        return self.upsert(schema.CATEGORIES, rows)

    def upsert_catalog(self, rows: Sequence[CatalogRow]) -> int:
        return self.upsert(schema.CATALOG, rows)

    def upsert_inventory(self, rows: Sequence[InventoryRow]) -> int:
        return self.upsert(schema.INVENTORY, rows)

    def upsert_payments(self, rows: Sequence[PaymentRow]) -> int:
        return self.upsert(schema.PAYMENTS, rows)

    def upsert_order_items(self, rows: Sequence[OrderItemRow]) -> int:
        return self.upsert(schema.ORDER_ITEMS, rows)
