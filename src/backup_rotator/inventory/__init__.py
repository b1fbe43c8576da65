"""Table inventory package.

Provides the ``TableInventory`` Protocol, the ``TableInfo`` record and the
MySQL ``information_schema`` implementation.

Usage:
    from backup_rotator.inventory import MySQLTableInventory, TableInfo
"""

from backup_rotator.inventory.base import TableInfo, TableInventory
from backup_rotator.inventory.mysql import MySQLTableInventory

__all__ = [
    "TableInfo",
    "TableInventory",
    "MySQLTableInventory",
]
