"""Shared fixtures: an in-memory store and a scripted ledger."""

import asyncio
import copy
from collections import Counter
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import pytest

from database.models import Asset, Transfer, TopOwner
from events import EventKind
from projector import LedgerProjector
from rpc import AssetDetail, AssetNotFound

CONTRACT = '0x3897196da6a4f2219ed4f183afa3a10c8c227f23'

ASSET_A = '0x' + 'aa' * 32
ASSET_B = '0x' + 'bb' * 32
# Digit-only addresses are already in checksum form
OWNER_1 = '0x' + '11' * 20
OWNER_2 = '0x' + '22' * 20
OWNER_3 = '0x' + '33' * 20

def tx_hash(n: int) -> str:
    return '0x' + f'{n:064x}'

def _word(address: str) -> str:
    return '0' * 24 + address[2:].lower()

def registration_log(asset_id: str, owner: str, block: int, txn: str, log_index: int = 0) -> Dict[str, Any]:
    return {
        'address': CONTRACT,
        'topics': [EventKind.ASSET_REGISTERED.topic, asset_id],
        'data': '0x' + _word(owner),
        'blockNumber': hex(block),
        'transactionHash': txn,
        'logIndex': hex(log_index),
        'removed': False
    }

def transfer_log(
    asset_id: str,
    old_owner: str,
    new_owner: str,
    block: int,
    txn: str,
    log_index: int = 0
) -> Dict[str, Any]:
    return {
        'address': CONTRACT,
        'topics': [EventKind.OWNERSHIP_TRANSFERRED.topic, asset_id],
        'data': '0x' + _word(old_owner) + _word(new_owner),
        'blockNumber': hex(block),
        'transactionHash': txn,
        'logIndex': hex(log_index),
        'removed': False
    }

class MemorySession:
    """StoreSession look-alike over MemoryStore state."""

    def __init__(self, store: 'MemoryStore'):
        self.store = store

    async def fetch_asset(self, asset_id: str) -> Optional[Asset]:
        return self.store.assets.get(asset_id)

    async def upsert_asset(self, asset_id: str, owner: str, description: str, registered_at: int) -> str:
        history = [t for t in self.store.transfers if t.asset_id == asset_id]
        if history:
            owner = max(history, key=lambda t: (t.timestamp, t.id)).new_owner
        self.store.assets[asset_id] = Asset(
            asset_id=asset_id,
            owner=owner,
            description=description,
            registered_at=registered_at
        )
        return owner

    async def update_owner(self, asset_id: str, owner: str) -> int:
        asset = self.store.assets.get(asset_id)
        if asset is None:
            return 0
        self.store.assets[asset_id] = asset.model_copy(update={'owner': owner})
        return 1

    def _ordered(self, assets) -> List[Asset]:
        return sorted(assets, key=lambda a: (a.registered_at, a.asset_id))

    async def list_assets(self) -> List[Asset]:
        return self._ordered(self.store.assets.values())

    async def list_assets_by_owner(self, owner: str) -> List[Asset]:
        return self._ordered(a for a in self.store.assets.values() if a.owner == owner)

    async def search_assets(self, asset_id=None, owner=None, start_date=None, end_date=None) -> List[Asset]:
        return self._ordered(
            a for a in self.store.assets.values()
            if (asset_id is None or a.asset_id == asset_id)
            and (owner is None or a.owner == owner)
            and (start_date is None or a.registered_at >= start_date)
            and (end_date is None or a.registered_at <= end_date)
        )

    async def transfer_exists(self, asset_id: str, txn_hash: str) -> bool:
        return any(t.asset_id == asset_id and t.txn_hash == txn_hash for t in self.store.transfers)

    async def insert_transfer(self, asset_id, old_owner, new_owner, timestamp, txn_hash, block_number=None):
        if await self.transfer_exists(asset_id, txn_hash):
            return None
        transfer_id = self.store.next_id
        self.store.next_id += 1
        self.store.transfers.append(Transfer(
            id=transfer_id,
            asset_id=asset_id,
            old_owner=old_owner,
            new_owner=new_owner,
            timestamp=timestamp,
            txn_hash=txn_hash,
            block_number=block_number
        ))
        return transfer_id

    async def list_transfers(self, asset_id: str) -> List[Transfer]:
        return sorted(
            (t for t in self.store.transfers if t.asset_id == asset_id),
            key=lambda t: (t.timestamp, t.id)
        )

    async def count_assets(self) -> int:
        if self.store.fail_reads:
            raise ConnectionError("store unavailable")
        return len(self.store.assets)

    async def count_transfers(self) -> int:
        return len(self.store.transfers)

    async def top_owners(self, limit: int = 3) -> List[TopOwner]:
        counts = Counter(t.new_owner for t in self.store.transfers)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0].lower()))
        return [TopOwner(owner=owner, transfer_count=n) for owner, n in ranked[:limit]]

    async def get_cursor(self) -> Optional[int]:
        return self.store.cursor

    async def save_cursor(self, last_block: int) -> None:
        self.store.cursor = last_block if self.store.cursor is None else max(self.store.cursor, last_block)

class MemoryStore:
    """In-memory LedgerStore with transactional rollback."""

    def __init__(self):
        self.assets: Dict[str, Asset] = {}
        self.transfers: List[Transfer] = []
        self.cursor: Optional[int] = None
        self.next_id = 1
        self.fail_reads = False
        self.units_of_work = 0

    @asynccontextmanager
    async def unit_of_work(self):
        saved = copy.deepcopy((self.assets, self.transfers, self.cursor, self.next_id))
        self.units_of_work += 1
        try:
            yield MemorySession(self)
        except BaseException:
            self.assets, self.transfers, self.cursor, self.next_id = saved
            raise

    @asynccontextmanager
    async def session(self):
        yield MemorySession(self)

class FakeLedger:
    """Scripted ledger client.

    streams holds one script per subscription; each script is a list of raw
    logs or exceptions. A script ending with END closes the stream, otherwise
    the stream stays open until cancelled. query_failures maps a chunk start
    block to an exception raised once for that chunk.
    """

    END = object()

    def __init__(self, latest: int = 0):
        self.latest = latest
        self.logs: List[Dict[str, Any]] = []
        self.details: Dict[str, AssetDetail] = {}
        self.streams: List[list] = []
        self.block_failures: List[Exception] = []
        self.query_failures: Dict[int, Exception] = {}
        self.detail_failures: List[Exception] = []
        self.queries: List[tuple] = []
        self.subscriptions: List[int] = []
        self.closed = False

    def add_asset(self, asset_id: str, owner: str, description: str = 'asset', registered_at: int = 1700000000):
        self.details[asset_id] = AssetDetail(
            asset_id=asset_id,
            owner=owner,
            description=description,
            registered_at=registered_at
        )

    async def latest_block(self) -> int:
        if self.block_failures:
            raise self.block_failures.pop(0)
        return self.latest

    async def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        self.queries.append((kind, from_block, to_block))
        failure = self.query_failures.pop(from_block, None)
        if failure is not None:
            raise failure
        return [
            log for log in self.logs
            if log['topics'][0] == kind.topic and from_block <= int(log['blockNumber'], 16) <= to_block
        ]

    async def subscribe_events(self, from_block: int):
        self.subscriptions.append(from_block)
        script = self.streams.pop(0) if self.streams else []
        for item in script:
            if item is self.END:
                return
            if isinstance(item, Exception):
                raise item
            yield item
        await asyncio.sleep(3600)

    async def get_asset_detail(self, asset_id: str) -> AssetDetail:
        if self.detail_failures:
            raise self.detail_failures.pop(0)
        if asset_id not in self.details:
            raise AssetNotFound('execution reverted: ASSET_DOES_NOT_EXIST', 3, 'eth_call')
        return self.details[asset_id]

    async def get_all_assets(self) -> List[AssetDetail]:
        return list(self.details.values())

    def close(self) -> None:
        self.closed = True

class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.snapshots = []

    def publish(self, snapshot) -> None:
        if self.fail:
            raise OSError("disk full")
        self.snapshots.append(snapshot)

class FixedClock:
    """Clock advancing one second per call."""

    def __init__(self, start: int = 1700000000):
        self.now = start

    def __call__(self) -> float:
        self.now += 1
        return float(self.now)

@pytest.fixture
def store():
    return MemoryStore()

@pytest.fixture
def ledger():
    return FakeLedger(latest=5000)

@pytest.fixture
def clock():
    return FixedClock()

@pytest.fixture
def projector(store, ledger, clock):
    return LedgerProjector(store, ledger, clock=clock)
