"""Ledger projector applying decoded events to the relational store.

This module provides:
- Idempotent upsert of registered assets, enriched with the contract's getAsset view
- Deduplicated recording of ownership transfers keyed by (asset_id, txn_hash)
- Full reconciliation of the assets table against getAllAssets
"""

import logging
import time
from typing import Callable

from database.store import LedgerStore
from events import AssetRegistered, DecodeError, LedgerEvent, OwnershipTransferred
from rpc import AssetNotFound, SwitchAssetsClient

logger = logging.getLogger(__name__)

class LedgerProjector:
    """Apply ledger events to the projection, one unit of work per event."""

    def __init__(
        self,
        store: LedgerStore,
        ledger: SwitchAssetsClient,
        clock: Callable[[], float] = time.time
    ):
        """Initialize the projector.

        Args:
            store: Transactional store for assets and transfers
            ledger: Client used to read asset details from the contract
            clock: Wall clock used to timestamp ingested transfers
        """
        self.store = store
        self.ledger = ledger
        self.clock = clock

    async def apply_registration(self, event: AssetRegistered) -> bool:
        """Upsert the asset named by a registration event.

        The contract is read before any transaction opens so no pooled
        connection is held across a ledger call.

        Returns:
            True if the asset row was written, False if the event was skipped

        Raises:
            LedgerError: Transient or permanent ledger failures
        """
        try:
            detail = await self.ledger.get_asset_detail(event.asset_id)
        except AssetNotFound:
            logger.warning(f"Asset {event.asset_id} not found on contract, skipping registration")
            return False
        except DecodeError as e:
            logger.warning(f"Skipping registration of {event.asset_id}: {e}")
            return False

        async with self.store.unit_of_work() as session:
            owner = await session.upsert_asset(
                event.asset_id,
                event.owner,
                detail.description,
                detail.registered_at
            )

        if owner != event.owner:
            logger.info(
                f"Asset {event.asset_id} registered with owner {owner} "
                f"from its latest recorded transfer"
            )
        else:
            logger.info(f"Asset {event.asset_id} registered to {owner}")
        return True

    async def apply_transfer(self, event: OwnershipTransferred) -> bool:
        """Record a transfer and move the asset to its new owner.

        Returns:
            True if the transfer was recorded, False if it was already present
        """
        async with self.store.unit_of_work() as session:
            if await session.transfer_exists(event.asset_id, event.txn_hash):
                logger.debug(f"Transfer {event.txn_hash} of {event.asset_id} already recorded")
                return False

            transfer_id = await session.insert_transfer(
                event.asset_id,
                event.old_owner,
                event.new_owner,
                int(self.clock()),
                event.txn_hash,
                event.block_number
            )
            if transfer_id is None:
                # Inserted concurrently between the check and the insert
                return False

            updated = await session.update_owner(event.asset_id, event.new_owner)

        if not updated:
            logger.warning(
                f"Transfer {event.txn_hash} recorded for unknown asset {event.asset_id}; "
                f"owner will be applied on registration"
            )
        else:
            logger.info(
                f"Asset {event.asset_id} transferred from {event.old_owner} to {event.new_owner}"
            )
        return True

    async def apply(self, event: LedgerEvent) -> bool:
        """Apply any canonical event."""
        if isinstance(event, AssetRegistered):
            return await self.apply_registration(event)
        if isinstance(event, OwnershipTransferred):
            return await self.apply_transfer(event)
        raise TypeError(f"Unsupported event type: {type(event).__name__}")

    async def reconcile_assets(self) -> int:
        """Upsert every asset the contract currently reports.

        Returns:
            Number of assets written
        """
        details = await self.ledger.get_all_assets()

        async with self.store.unit_of_work() as session:
            for detail in details:
                await session.upsert_asset(
                    detail.asset_id,
                    detail.owner,
                    detail.description,
                    detail.registered_at
                )

        logger.info(f"Reconciled {len(details)} assets from contract")
        return len(details)

# Export public interface
__all__ = ['LedgerProjector']
