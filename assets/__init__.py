"""Read queries over the ledger projection.

Addresses are EIP-55 checksummed and asset ids normalized to 0x-prefixed
lowercase hex before querying, so callers may pass either form.
"""

import logging
from typing import List, Optional

from eth_utils import is_address, to_checksum_address

from database.models import Asset, Transfer
from database.store import LedgerStore
from events import normalize_asset_id

logger = logging.getLogger(__name__)

def normalize_address(address: str) -> str:
    """Checksum an address.

    Raises:
        ValueError: If the value is not a valid address
    """
    if not is_address(address):
        raise ValueError(f"Invalid address: {address}")
    return to_checksum_address(address)

async def list_assets(store: LedgerStore) -> List[Asset]:
    """Return every asset, oldest registration first."""
    async with store.session() as session:
        return await session.list_assets()

async def list_transfers(store: LedgerStore, asset_id: str) -> List[Transfer]:
    """Return the transfer history of an asset in ingestion order."""
    async with store.session() as session:
        return await session.list_transfers(normalize_asset_id(asset_id))

async def list_assets_by_owner(store: LedgerStore, address: str) -> List[Asset]:
    """Return the assets currently owned by an address."""
    async with store.session() as session:
        return await session.list_assets_by_owner(normalize_address(address))

async def search_assets(
    store: LedgerStore,
    asset_id: Optional[str] = None,
    owner: Optional[str] = None,
    start_date: Optional[int] = None,
    end_date: Optional[int] = None
) -> List[Asset]:
    """Search assets by id, owner and registration time.

    Args:
        store: Store to query
        asset_id: Exact asset id
        owner: Current owner address
        start_date: Earliest registered_at, inclusive
        end_date: Latest registered_at, inclusive

    Returns:
        Assets matching every given filter
    """
    async with store.session() as session:
        return await session.search_assets(
            asset_id=normalize_asset_id(asset_id) if asset_id is not None else None,
            owner=normalize_address(owner) if owner is not None else None,
            start_date=start_date,
            end_date=end_date
        )

# Export public interface
__all__ = [
    'list_assets',
    'list_transfers',
    'list_assets_by_owner',
    'search_assets',
    'normalize_address'
]
