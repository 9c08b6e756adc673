"""Storage backends for Courier.

Persists endpoints, deliveries and the append-only delivery log in a SQL
database through SQLAlchemy's asyncio extension (SQLite via aiosqlite by
default).

Example:
    ```python
    from courier.storage import CourierStorage

    async with CourierStorage() as storage:
        endpoints = await storage.list_endpoints()
    ```
"""

from .base import DEFAULT_DATABASE_URL
from .client import CourierStorage

__all__ = [
    "CourierStorage",
    "DEFAULT_DATABASE_URL",
]
