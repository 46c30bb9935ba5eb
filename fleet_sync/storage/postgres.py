"""
PostgreSQL async backend for dashboard tables.

Provides the select/insert/update/delete interface consumed by the
fetcher and the optimistic updater, with connection pooling and
translation of driver errors into the sync error taxonomy.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Dict, List, Optional, Sequence
from dataclasses import dataclass
import structlog

import asyncpg

from ..framework.config import BackendConfig
from ..utils.errors import (
    BackendError,
    ConnectivityError,
    ConstraintError,
    PermissionError,
    describe_missing_reference,
)


logger = structlog.get_logger()

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def quote_identifier(name: str) -> str:
    """Validate and quote a (possibly schema-qualified) identifier."""
    parts = name.split(".")
    for part in parts:
        if not _IDENTIFIER.match(part):
            raise ValueError(f"Invalid identifier: {name!r}")
    return ".".join(f'"{part}"' for part in parts)


def translate_error(error: Exception, operation: str, table: str) -> BackendError:
    """Map a driver exception onto the sync error taxonomy."""
    if isinstance(error, BackendError):
        return error

    if isinstance(error, asyncpg.exceptions.IntegrityConstraintViolationError):
        detail = getattr(error, "detail", None)
        user_message = None
        if isinstance(error, asyncpg.exceptions.ForeignKeyViolationError):
            user_message = describe_missing_reference(detail)
        return ConstraintError(
            str(error),
            constraint=getattr(error, "constraint_name", None),
            operation=operation,
            table=table,
            user_message=user_message,
            details={"detail": detail} if detail else None,
        )

    if isinstance(error, asyncpg.exceptions.InsufficientPrivilegeError):
        return PermissionError(str(error), operation=operation, table=table)

    if isinstance(error, (
        OSError,
        asyncio.TimeoutError,
        asyncpg.exceptions.PostgresConnectionError,
        asyncpg.exceptions.InterfaceError,
    )):
        return ConnectivityError(str(error) or type(error).__name__, operation=operation, table=table)

    return BackendError(str(error), operation=operation, table=table)


@dataclass
class PostgresConfig:
    """PostgreSQL configuration."""
    dsn: str
    min_size: int = 1
    max_size: int = 10
    timeout: float = 30
    schema: Optional[str] = None

    @classmethod
    def from_backend_config(cls, config: BackendConfig) -> "PostgresConfig":
        return cls(
            dsn=config.postgres_dsn,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
            timeout=config.timeout,
            schema=config.schema,
        )


class PostgresBackend:
    """
    Async PostgreSQL backend with connection pooling.

    Every call is a single round trip. Nothing is retried here; retry policy
    belongs to the cache layer.
    """

    def __init__(self, config: PostgresConfig):
        self.config = config
        self.logger = structlog.get_logger("postgres-backend")
        self._pool: Optional[asyncpg.Pool] = None
        self.is_connected: bool = False

    async def connect(self) -> None:
        """Connect to PostgreSQL."""
        if self._pool:
            self.is_connected = True
            return

        try:
            self._pool = await asyncpg.create_pool(
                self.config.dsn,
                min_size=self.config.min_size,
                max_size=self.config.max_size,
                command_timeout=self.config.timeout
            )
        except Exception as e:
            raise translate_error(e, "connect", "") from e

        self.is_connected = True
        self.logger.info("Connected to PostgreSQL")

    async def disconnect(self) -> None:
        """Disconnect from PostgreSQL."""
        if self._pool:
            await self._pool.close()
            self._pool = None

        self.is_connected = False
        self.logger.info("Disconnected from PostgreSQL")

    async def close(self) -> None:
        """Alias for disconnect to mirror other clients."""
        await self.disconnect()

    def _table(self, table: str) -> str:
        """Quote ``table``, qualifying bare names with the configured schema."""
        if self.config.schema and "." not in table:
            table = f"{self.config.schema}.{table}"
        return quote_identifier(table)

    async def _fetch(self, operation: str, table: str, query: str, *args: Any) -> List[Dict[str, Any]]:
        if not self._pool:
            await self.connect()

        conn = None
        try:
            conn = await self._pool.acquire()
            rows = await conn.fetch(query, *args)
            return [dict(row) for row in rows]
        except Exception as e:
            self.logger.error("PostgreSQL query error", operation=operation, table=table, error=str(e))
            raise translate_error(e, operation, table) from e
        finally:
            if conn is not None:
                await self._pool.release(conn)

    async def select(
        self,
        table: str,
        columns: Sequence[str] = ("*",),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        """Read rows from a table or view."""
        if not columns or list(columns) == ["*"]:
            projection = "*"
        else:
            projection = ", ".join(quote_identifier(column) for column in columns)

        query = f"SELECT {projection} FROM {self._table(table)}"
        if order_by:
            query += f" ORDER BY {quote_identifier(order_by)} {'DESC' if descending else 'ASC'}"

        return await self._fetch("select", table, query)

    async def insert(self, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return it as stored."""
        if not payload:
            raise ValueError("payload must not be empty")

        columns = list(payload.keys())
        placeholders = [f"${i+1}" for i in range(len(columns))]
        query = (
            f"INSERT INTO {self._table(table)} "
            f"({', '.join(quote_identifier(c) for c in columns)}) "
            f"VALUES ({', '.join(placeholders)}) RETURNING *"
        )
        rows = await self._fetch("insert", table, query, *payload.values())
        self.logger.debug("Row inserted", table=table)
        return rows[0]

    async def update(self, table: str, payload: Dict[str, Any], id_field: str = "id") -> Dict[str, Any]:
        """Update the row identified by ``payload[id_field]``."""
        if id_field not in payload:
            raise ValueError(f"payload must contain {id_field}")

        values = {k: v for k, v in payload.items() if k != id_field}
        if not values:
            raise ValueError("payload has no columns to update")

        set_clauses = [f"{quote_identifier(col)} = ${i+1}" for i, col in enumerate(values)]
        query = (
            f"UPDATE {self._table(table)} SET {', '.join(set_clauses)} "
            f"WHERE {quote_identifier(id_field)} = ${len(values) + 1} RETURNING *"
        )
        rows = await self._fetch("update", table, query, *values.values(), payload[id_field])
        if not rows:
            raise BackendError(f"No {table} row with {id_field}={payload[id_field]}", operation="update", table=table)
        self.logger.debug("Row updated", table=table)
        return rows[0]

    async def delete(self, table: str, payload: Dict[str, Any], id_field: str = "id") -> Dict[str, Any]:
        """Delete the row identified by ``payload[id_field]``."""
        if id_field not in payload:
            raise ValueError(f"payload must contain {id_field}")

        query = f"DELETE FROM {self._table(table)} WHERE {quote_identifier(id_field)} = $1 RETURNING *"
        rows = await self._fetch("delete", table, query, payload[id_field])
        if not rows:
            raise BackendError(f"No {table} row with {id_field}={payload[id_field]}", operation="delete", table=table)
        self.logger.debug("Row deleted", table=table)
        return rows[0]

    async def health_check(self) -> bool:
        """Check PostgreSQL health."""
        try:
            rows = await self._fetch("health_check", "", "SELECT 1 AS ok")
            return rows[0]["ok"] == 1
        except BackendError as e:
            self.logger.error("PostgreSQL health check failed", error=str(e))
            return False

    async def __aenter__(self):
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.disconnect()
