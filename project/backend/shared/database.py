"""
Database client.

Async wrapper around the Supabase (PostgREST) query builder.
"""

import asyncio
from typing import Any, Optional

from supabase import create_client, Client

from shared.config import settings
from shared.errors import ConfigError, RetryableError
from shared.logging import get_logger

logger = get_logger("database")


class AsyncTableQueryBuilder:
    """
    Chainable query builder whose ``execute()`` is awaitable.

    The Supabase client is synchronous; each filter call is forwarded to
    the underlying builder and ``execute()`` runs in a worker thread.
    """

    def __init__(self, builder: Any):
        self._builder = builder

    def select(self, *columns: str, **kwargs) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.select(*columns, **kwargs)
        return self

    def insert(self, data: Any) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.insert(data)
        return self

    def update(self, data: dict) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.update(data)
        return self

    def upsert(self, data: Any) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.upsert(data)
        return self

    def delete(self) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.delete()
        return self

    def eq(self, column: str, value: Any) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.eq(column, value)
        return self

    def limit(self, count: int) -> "AsyncTableQueryBuilder":
        self._builder = self._builder.limit(count)
        return self

    async def execute(self):
        try:
            return await asyncio.to_thread(self._builder.execute)
        except Exception as e:
            logger.error("Database query failed", exc_info=e)
            raise RetryableError(f"Database query failed: {str(e)}") from e


class DatabaseClient:
    """Supabase database client created on first use."""

    def __init__(self):
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            try:
                self._client = create_client(settings.supabase_url, settings.supabase_service_key)
            except Exception as e:
                raise ConfigError(f"Failed to initialize Supabase client: {str(e)}") from e
        return self._client

    def table(self, name: str) -> AsyncTableQueryBuilder:
        """Start a query against ``name``."""
        return AsyncTableQueryBuilder(self.client.table(name))

    async def health_check(self) -> bool:
        """
        Check database connectivity.

        Returns:
            True if a trivial query succeeds, False otherwise
        """
        try:
            await self.table("videos").select("id").limit(1).execute()
            return True
        except Exception:
            return False


# Singleton instance
db = DatabaseClient()
