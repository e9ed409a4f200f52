"""Unit-of-work access to the ledger projection tables.

LedgerStore owns the connection pool seam:
- unit_of_work() acquires one pooled connection, opens a transaction and
  releases both when the block exits (commit on success, rollback on error)
- session() acquires one pooled connection for read-only queries

All SQL lives on StoreSession so the projector, the analytics and the read
queries never touch asyncpg directly.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from asyncpg.pool import Pool

from .exceptions import DatabaseNotInitializedError
from .models import Asset, Transfer, TopOwner

logger = logging.getLogger(__name__)

CURSOR_ROW_ID = 1

def _affected_rows(status: str) -> int:
    """Parse the row count from an asyncpg command status such as 'UPDATE 1'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0

class StoreSession:
    """SQL operations bound to a single connection."""

    def __init__(self, conn) -> None:
        self.conn = conn

    # Assets

    async def fetch_asset(self, asset_id: str) -> Optional[Asset]:
        row = await self.conn.fetchrow(
            '''
            SELECT asset_id, owner, description, registered_at
            FROM assets
            WHERE asset_id = $1
            ''',
            asset_id
        )
        return Asset(**dict(row)) if row else None

    async def upsert_asset(
        self,
        asset_id: str,
        owner: str,
        description: str,
        registered_at: int
    ) -> str:
        """Insert or overwrite an asset row.

        The owner written is the new_owner of the latest recorded transfer for
        the asset when one exists, otherwise the given registration owner.

        Returns:
            The owner stored on the row
        """
        return await self.conn.fetchval(
            '''
            INSERT INTO assets (asset_id, owner, description, registered_at, updated_at)
            VALUES (
                $1,
                COALESCE(
                    (
                        SELECT new_owner
                        FROM transfers
                        WHERE asset_id = $1
                        ORDER BY timestamp DESC, id DESC
                        LIMIT 1
                    ),
                    $2
                ),
                $3,
                $4,
                now()
            )
            ON CONFLICT (asset_id) DO UPDATE SET
                owner = excluded.owner,
                description = excluded.description,
                registered_at = excluded.registered_at,
                updated_at = now()
            RETURNING owner
            ''',
            asset_id,
            owner,
            description,
            registered_at
        )

    async def update_owner(self, asset_id: str, owner: str) -> int:
        """Set the owner of an asset.

        Returns:
            Number of rows updated (0 when the asset is not registered yet)
        """
        status = await self.conn.execute(
            '''
            UPDATE assets
            SET owner = $2, updated_at = now()
            WHERE asset_id = $1
            ''',
            asset_id,
            owner
        )
        return _affected_rows(status)

    async def list_assets(self) -> List[Asset]:
        rows = await self.conn.fetch(
            '''
            SELECT asset_id, owner, description, registered_at
            FROM assets
            ORDER BY registered_at, asset_id
            '''
        )
        return [Asset(**dict(row)) for row in rows]

    async def list_assets_by_owner(self, owner: str) -> List[Asset]:
        rows = await self.conn.fetch(
            '''
            SELECT asset_id, owner, description, registered_at
            FROM assets
            WHERE owner = $1
            ORDER BY registered_at, asset_id
            ''',
            owner
        )
        return [Asset(**dict(row)) for row in rows]

    async def search_assets(
        self,
        asset_id: Optional[str] = None,
        owner: Optional[str] = None,
        start_date: Optional[int] = None,
        end_date: Optional[int] = None
    ) -> List[Asset]:
        """Filter assets; every given filter must match, bounds are inclusive."""
        filters = []
        params = []

        for clause, value in (
            ('asset_id = ${}', asset_id),
            ('owner = ${}', owner),
            ('registered_at >= ${}', start_date),
            ('registered_at <= ${}', end_date),
        ):
            if value is not None:
                params.append(value)
                filters.append(clause.format(len(params)))

        where = f"WHERE {' AND '.join(filters)}" if filters else ''
        rows = await self.conn.fetch(
            f'''
            SELECT asset_id, owner, description, registered_at
            FROM assets
            {where}
            ORDER BY registered_at, asset_id
            ''',
            *params
        )
        return [Asset(**dict(row)) for row in rows]

    # Transfers

    async def transfer_exists(self, asset_id: str, txn_hash: str) -> bool:
        return await self.conn.fetchval(
            '''
            SELECT EXISTS (
                SELECT 1 FROM transfers
                WHERE asset_id = $1 AND txn_hash = $2
            )
            ''',
            asset_id,
            txn_hash
        )

    async def insert_transfer(
        self,
        asset_id: str,
        old_owner: str,
        new_owner: str,
        timestamp: int,
        txn_hash: str,
        block_number: Optional[int] = None
    ) -> Optional[int]:
        """Append a transfer row.

        Returns:
            The new row id, or None when the dedup key already exists
        """
        return await self.conn.fetchval(
            '''
            INSERT INTO transfers (
                asset_id, old_owner, new_owner, timestamp, txn_hash, block_number
            )
            VALUES ($1, $2, $3, $4, $5, $6)
            ON CONFLICT (asset_id, txn_hash) DO NOTHING
            RETURNING id
            ''',
            asset_id,
            old_owner,
            new_owner,
            timestamp,
            txn_hash,
            block_number
        )

    async def list_transfers(self, asset_id: str) -> List[Transfer]:
        rows = await self.conn.fetch(
            '''
            SELECT id, asset_id, old_owner, new_owner, timestamp, txn_hash, block_number
            FROM transfers
            WHERE asset_id = $1
            ORDER BY timestamp, id
            ''',
            asset_id
        )
        return [Transfer(**dict(row)) for row in rows]

    # Analytics

    async def count_assets(self) -> int:
        return await self.conn.fetchval('SELECT count(*) FROM assets')

    async def count_transfers(self) -> int:
        return await self.conn.fetchval('SELECT count(*) FROM transfers')

    async def top_owners(self, limit: int = 3) -> List[TopOwner]:
        """Owners ranked by number of transfers received, ties by address."""
        rows = await self.conn.fetch(
            '''
            SELECT new_owner AS owner, count(*) AS transfer_count
            FROM transfers
            GROUP BY new_owner
            ORDER BY transfer_count DESC, lower(new_owner) ASC
            LIMIT $1
            ''',
            limit
        )
        return [TopOwner(**dict(row)) for row in rows]

    # Sync cursor

    async def get_cursor(self) -> Optional[int]:
        return await self.conn.fetchval(
            'SELECT last_block FROM sync_cursor WHERE id = $1',
            CURSOR_ROW_ID
        )

    async def save_cursor(self, last_block: int) -> None:
        # Never moves backwards: redelivered blocks must not rewind it
        await self.conn.execute(
            '''
            INSERT INTO sync_cursor (id, last_block, updated_at)
            VALUES ($1, $2, now())
            ON CONFLICT (id) DO UPDATE SET
                last_block = GREATEST(sync_cursor.last_block, excluded.last_block),
                updated_at = now()
            ''',
            CURSOR_ROW_ID,
            last_block
        )

class LedgerStore:
    """Transactional access to the projection through a bounded pool."""

    def __init__(self, pool: Optional[Pool]) -> None:
        """Initialize the store.

        Args:
            pool: Database connection pool, shared with the read side
        """
        self.pool = pool

    def _require_pool(self) -> Pool:
        if self.pool is None:
            raise DatabaseNotInitializedError("LedgerStore used before a pool was created")
        return self.pool

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[StoreSession]:
        """Run a block of writes atomically on one pooled connection."""
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                yield StoreSession(conn)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[StoreSession]:
        """Borrow one pooled connection for reads."""
        async with self._require_pool().acquire() as conn:
            yield StoreSession(conn)
