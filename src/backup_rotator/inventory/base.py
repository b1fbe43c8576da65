"""Table inventory protocol definition.

Defines ``TableInfo`` and the ``TableInventory`` Protocol that every
inventory source must implement.  All methods are ``async def``.

Usage:
    from backup_rotator.inventory.base import TableInfo, TableInventory

    async def total_rows(inventory: TableInventory, database: str) -> int:
        tables = await inventory.list_tables(database)
        return sum(t.row_count for t in tables)
"""

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field


class TableInfo(BaseModel):
    """A table name and its (estimated) row count. Immutable."""

    model_config = ConfigDict(frozen=True)

    name: str
    row_count: int = Field(ge=0)


class TableInventory(Protocol):
    """Source of table names and row counts for one database.

    Implementations must raise ``InventoryUnavailable`` for any transport
    or query failure so the run aborts before dump work begins.
    """

    async def list_tables(self, database: str) -> list[TableInfo]:
        """Return the tables of ``database`` with their row counts.

        Args:
            database: Database (schema) name.

        Returns:
            List of ``TableInfo``, in a stable order.  Empty list if the
            database has no tables.

        Raises:
            InventoryUnavailable: If the tables cannot be enumerated.

        Example:
            tables = await inventory.list_tables("shop")
        """
        ...

    async def close(self) -> None:
        """Release connections held by the inventory."""
        ...
