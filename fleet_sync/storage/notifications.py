"""
PostgreSQL LISTEN/NOTIFY change channel.

Each subscribed table listens on ``<prefix><table>``. Notification payloads
are JSON documents of the form::

    {"type": "UPDATE", "table": "vehicles", "record": {...}, "old_record": {...}}

as produced by the trigger returned from ``trigger_sql``.
"""

import json
from typing import Callable, Dict, Optional

import asyncpg
import structlog

from ..schemas.models import ChangeEvent
from ..utils.errors import SubscriptionError
from .postgres import quote_identifier

logger = structlog.get_logger()

EventCallback = Callable[[ChangeEvent], None]
ErrorCallback = Callable[[str, SubscriptionError], None]


def trigger_sql(table: str, channel_prefix: str = "table_changes_") -> str:
    """SQL installing a row trigger that publishes changes for ``table``."""
    quoted = quote_identifier(table)
    name = table.split(".")[-1]
    return f"""
CREATE OR REPLACE FUNCTION fleet_sync_notify_{name}() RETURNS trigger AS $$
BEGIN
  PERFORM pg_notify(
    '{channel_prefix}{name}',
    json_build_object(
      'type', TG_OP,
      'table', TG_TABLE_NAME,
      'record', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
      'old_record', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
    )::text
  );
  RETURN NULL;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS fleet_sync_notify_{name} ON {quoted};
CREATE TRIGGER fleet_sync_notify_{name}
  AFTER INSERT OR UPDATE OR DELETE ON {quoted}
  FOR EACH ROW EXECUTE FUNCTION fleet_sync_notify_{name}();
"""


class PostgresChangeChannel:
    """Delivers row-change notifications over one dedicated connection."""

    def __init__(self, dsn: str, channel_prefix: str = "table_changes_"):
        self.dsn = dsn
        self.channel_prefix = channel_prefix
        self.logger = structlog.get_logger("postgres-change-channel")
        self._conn: Optional[asyncpg.Connection] = None
        self._listeners: Dict[str, Callable] = {}
        self._error_callbacks: Dict[str, ErrorCallback] = {}

    def channel_name(self, table: str) -> str:
        return f"{self.channel_prefix}{table.split('.')[-1]}"

    async def _ensure_connection(self) -> asyncpg.Connection:
        if self._conn is None or self._conn.is_closed():
            self._conn = await asyncpg.connect(self.dsn)
            self._conn.add_termination_listener(self._on_terminated)
            self.logger.info("Change channel connection opened")
        return self._conn

    async def subscribe(self, table: str, callback: EventCallback, on_error: Optional[ErrorCallback] = None) -> str:
        """
        Start listening for changes to ``table``.

        Raises:
            SubscriptionError: If the channel cannot be established.
        """
        channel = self.channel_name(table)
        if table in self._listeners:
            return channel

        try:
            conn = await self._ensure_connection()
            listener = self._make_listener(table, callback)
            await conn.add_listener(channel, listener)
        except (OSError, asyncpg.exceptions.PostgresError, asyncpg.exceptions.InterfaceError) as e:
            raise SubscriptionError(f"Failed to listen on {channel}: {e}", table=table) from e

        self._listeners[table] = listener
        if on_error is not None:
            self._error_callbacks[table] = on_error
        self.logger.info("Listening for changes", table=table, channel=channel)
        return channel

    def _make_listener(self, table: str, callback: EventCallback) -> Callable:
        def listener(connection, pid, channel, payload):
            try:
                event = ChangeEvent.from_dict(json.loads(payload))
            except (ValueError, KeyError, TypeError) as e:
                self.logger.warning("Malformed change notification", table=table, channel=channel, error=str(e))
                return
            callback(event)

        return listener

    async def unsubscribe(self, table: str) -> None:
        """Stop listening for ``table``; closes the connection when idle."""
        listener = self._listeners.pop(table, None)
        self._error_callbacks.pop(table, None)
        if listener is None:
            return

        if self._conn is not None and not self._conn.is_closed():
            try:
                await self._conn.remove_listener(self.channel_name(table), listener)
            except (OSError, asyncpg.exceptions.InterfaceError) as e:
                self.logger.warning("Failed to remove listener", table=table, error=str(e))

        self.logger.info("Stopped listening", table=table)
        if not self._listeners:
            await self.close()

    def _on_terminated(self, connection) -> None:
        """Report every subscribed table as dropped."""
        if connection is not self._conn:
            return
        self._conn = None
        dropped = list(self._listeners)
        callbacks = dict(self._error_callbacks)
        self._listeners.clear()
        self._error_callbacks.clear()
        self.logger.warning("Change channel connection terminated", tables=dropped)

        for table in dropped:
            on_error = callbacks.get(table)
            if on_error is not None:
                on_error(table, SubscriptionError("Change channel connection terminated", table=table))

    async def close(self) -> None:
        """Close the listener connection."""
        conn, self._conn = self._conn, None
        self._listeners.clear()
        self._error_callbacks.clear()
        if conn is not None and not conn.is_closed():
            conn.remove_termination_listener(self._on_terminated)
            await conn.close()
            self.logger.info("Change channel connection closed")
