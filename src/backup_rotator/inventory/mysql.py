"""MySQL table inventory via information_schema.

Provides ``MySQLTableInventory``, an async implementation of the
``TableInventory`` protocol using SQLAlchemy's async engine with the
``aiomysql`` driver.

Usage:
    from backup_rotator.inventory.mysql import MySQLTableInventory

    inventory = MySQLTableInventory.from_profile(profile)
    tables = await inventory.list_tables("shop")
    await inventory.close()
"""

from typing import Any

from sqlalchemy import URL, text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from backup_rotator.config.models import ConnectionProfile
from backup_rotator.errors import InventoryUnavailable
from backup_rotator.inventory.base import TableInfo

# table_rows is NULL for views and some engines; only base tables are dumped
# with data, so views are excluded.
TABLE_INVENTORY_SQL = text(
    """
    SELECT table_name AS table_name, COALESCE(table_rows, 0) AS row_count
    FROM information_schema.tables
    WHERE table_schema = :database AND table_type = 'BASE TABLE'
    ORDER BY table_name
    """
)


def create_inventory_engine(database_url: str | URL, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for inventory queries.

    Default settings:

    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.
    - ``connect_args={"connect_timeout": 10}``: Fail fast on unreachable hosts.

    Args:
        database_url: MySQL connection URL with ``mysql+aiomysql://`` scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {"connect_timeout": 10},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


class MySQLTableInventory:
    """Async MySQL implementation of the ``TableInventory`` protocol.

    The database name is passed as a bound parameter, never interpolated
    into the SQL text.

    Args:
        database_url: MySQL connection URL.  Accepts ``mysql://`` or
            ``mysql+aiomysql://`` schemes (normalized to ``mysql+aiomysql://``).
        **engine_kwargs: Forwarded to ``create_inventory_engine``.
    """

    def __init__(self, database_url: str | URL, **engine_kwargs: Any) -> None:
        url = database_url
        if isinstance(url, str) and url.startswith("mysql://"):
            url = "mysql+aiomysql://" + url[len("mysql://"):]

        self._engine: AsyncEngine = create_inventory_engine(url, **engine_kwargs)

    @classmethod
    def from_profile(
        cls, profile: ConnectionProfile, **engine_kwargs: Any
    ) -> "MySQLTableInventory":
        """Build an inventory from a connection profile.

        Connects to ``information_schema`` so the target database does not
        need to exist for the connection itself to succeed.
        """
        url = URL.create(
            "mysql+aiomysql",
            username=profile.user,
            password=profile.password,
            host=profile.host,
            port=profile.port,
            database="information_schema",
        )
        return cls(url, **engine_kwargs)

    async def list_tables(self, database: str) -> list[TableInfo]:
        """Return base tables of ``database`` with estimated row counts."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(TABLE_INVENTORY_SQL, {"database": database})
                rows = result.fetchall()
        except Exception as e:
            raise InventoryUnavailable(
                f"Failed to list tables for '{database}': {e}"
            ) from e

        return [TableInfo(name=row[0], row_count=int(row[1])) for row in rows]

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        await self._engine.dispose()
