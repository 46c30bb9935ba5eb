"""
Backend adapters for the hosted PostgreSQL database.

Provides:
- PostgresBackend: pooled select/insert/update/delete
- PostgresChangeChannel: LISTEN/NOTIFY row-change delivery
"""

from .postgres import PostgresBackend, PostgresConfig, translate_error
from .notifications import PostgresChangeChannel, trigger_sql

__all__ = [
    "PostgresBackend",
    "PostgresConfig",
    "translate_error",
    "PostgresChangeChannel",
    "trigger_sql",
]
