"""Database module for managing connections to PostgreSQL / CockroachDB.

This module handles:
- Database connection pool creation
- Schema management
- Connection lifecycle

The pool is returned to the caller and passed around explicitly; this module
keeps no process-wide connection state.
"""

import logging
import ssl
from typing import Optional, Dict, Any
from urllib.parse import urlparse, parse_qs

import backoff
import asyncpg

from .exceptions import DatabaseError, DatabaseSchemaError, DatabaseNotInitializedError
from .lib.schema_manager import SchemaManager
from .store import LedgerStore, StoreSession

logger = logging.getLogger(__name__)

CONNECTION_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    ConnectionRefusedError,
)

def _get_ssl_context() -> ssl.SSLContext:
    """Create SSL context for hosted database connections."""
    ssl_context = ssl.create_default_context()
    ssl_context.verify_mode = ssl.CERT_REQUIRED
    ssl_context.check_hostname = True
    return ssl_context

def _get_connection_kwargs(db_url: str) -> Dict[str, Any]:
    """Get connection kwargs from database URL.

    Args:
        db_url: Database connection URL

    Returns:
        Dict of connection parameters
    """
    parsed = urlparse(db_url)
    params = parse_qs(parsed.query)

    kwargs: Dict[str, Any] = {
        'server_settings': {
            'statement_timeout': '300000',  # 5 minutes
        }
    }

    sslmode = params.get('sslmode', ['disable'])[0]
    if sslmode in ('require', 'verify-ca', 'verify-full'):
        kwargs['ssl'] = _get_ssl_context()

    return kwargs

@backoff.on_exception(
    backoff.expo,
    CONNECTION_ERRORS,
    max_tries=5
)
async def create_pool(
    db_url: str,
    min_size: int = 1,
    max_size: int = 10
) -> asyncpg.Pool:
    """Create the database connection pool.

    The pool is bounded; the indexer takes one connection per unit of work and
    shares the rest with the read side.

    Args:
        db_url: Database connection URL
        min_size: Minimum idle connections
        max_size: Maximum connections

    Returns:
        The connection pool

    Raises:
        ValueError: If database URL is not provided
        asyncpg.exceptions.PostgresConnectionError: If the database stays unreachable after retries
    """
    if not db_url:
        raise ValueError("Database URL not provided")

    logger.info(f"Creating database pool (min={min_size}, max={max_size})")
    return await asyncpg.create_pool(
        db_url,
        min_size=min_size,
        max_size=max_size,
        max_queries=10000,   # Reset connection after this many queries
        max_inactive_connection_lifetime=300.0,  # 5 minutes
        command_timeout=60.0,  # 1 minute command timeout
        **_get_connection_kwargs(db_url)
    )

async def init_db(pool: asyncpg.Pool, force_recreate: bool = False) -> None:
    """Initialize the database schema.

    Args:
        pool: Database connection pool
        force_recreate: If True, drop the projection tables and rebuild them

    Raises:
        DatabaseSchemaError: If schema creation or migration fails
    """
    if force_recreate:
        logger.info("Force recreate requested. Dropping projection tables...")
        async with pool.acquire() as conn:
            for table in ('transfers', 'assets', 'sync_cursor', 'schema_version'):
                await conn.execute(f'DROP TABLE IF EXISTS {table} CASCADE')

    schema_manager = SchemaManager(pool)
    await schema_manager.initialize()

async def close(pool: Optional[asyncpg.Pool]) -> None:
    """Close the database connection pool."""
    if pool is not None:
        await pool.close()
        logger.info("Database pool closed")

# Export public interface
__all__ = [
    'create_pool',
    'init_db',
    'close',
    'LedgerStore',
    'StoreSession',
    'DatabaseError',
    'DatabaseSchemaError',
    'DatabaseNotInitializedError',
    'CONNECTION_ERRORS'
]
