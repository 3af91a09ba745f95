"""
crmflow storage layer.

Table-addressed row stores used for integration configuration rows and
activity-log rows.
"""

from .base import Filter, FilterOp, RowStore, StorageError
from .memory import InMemoryRowStore
from .mongo import MongoRowStore

CONFIG_TABLE = "integration_configs"
ACTIVITY_TABLE = "integration_activity_logs"

__all__ = [
    "ACTIVITY_TABLE",
    "CONFIG_TABLE",
    "Filter",
    "FilterOp",
    "InMemoryRowStore",
    "MongoRowStore",
    "RowStore",
    "StorageError",
]
