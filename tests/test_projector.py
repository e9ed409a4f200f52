"""Tests for applying ledger events to the projection."""

import pytest

from events import AssetRegistered, OwnershipTransferred
from rpc import NodeAuthError, NodeConnectionError
from conftest import ASSET_A, ASSET_B, OWNER_1, OWNER_2, OWNER_3, tx_hash

def registered(asset_id=ASSET_A, owner=OWNER_1, block=10, n=1):
    return AssetRegistered(asset_id=asset_id, owner=owner, txn_hash=tx_hash(n), block_number=block)

def transferred(old_owner, new_owner, n, asset_id=ASSET_A, block=11):
    return OwnershipTransferred(
        asset_id=asset_id,
        old_owner=old_owner,
        new_owner=new_owner,
        txn_hash=tx_hash(n),
        block_number=block
    )

@pytest.mark.asyncio
async def test_registration_then_two_transfers(store, ledger, projector):
    """Test that the owner follows the latest transfer."""
    ledger.add_asset(ASSET_A, OWNER_1, description='Deed', registered_at=1699999999)

    assert await projector.apply(registered())
    assert await projector.apply(transferred(OWNER_1, OWNER_2, 10))
    assert await projector.apply(transferred(OWNER_2, OWNER_3, 11, block=12))

    asset = store.assets[ASSET_A]
    assert asset.owner == OWNER_3
    assert asset.description == 'Deed'
    assert asset.registered_at == 1699999999
    transfers = [t for t in store.transfers if t.asset_id == ASSET_A]
    assert len(transfers) == 2
    assert [t.new_owner for t in transfers] == [OWNER_2, OWNER_3]
    assert [t.block_number for t in transfers] == [11, 12]

@pytest.mark.asyncio
async def test_replayed_transfer_is_noop(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1)
    await projector.apply(registered())
    await projector.apply(transferred(OWNER_1, OWNER_2, 10))
    await projector.apply(transferred(OWNER_2, OWNER_3, 11))

    assert await projector.apply(transferred(OWNER_1, OWNER_2, 10)) is False

    assert len(store.transfers) == 2
    assert store.assets[ASSET_A].owner == OWNER_3

@pytest.mark.asyncio
async def test_same_txn_hash_for_different_assets_is_not_a_duplicate(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1)
    ledger.add_asset(ASSET_B, OWNER_1)
    await projector.apply(registered(ASSET_A))
    await projector.apply(registered(ASSET_B, n=2))

    assert await projector.apply(transferred(OWNER_1, OWNER_2, 10, asset_id=ASSET_A))
    assert await projector.apply(transferred(OWNER_1, OWNER_3, 10, asset_id=ASSET_B))

    assert store.assets[ASSET_A].owner == OWNER_2
    assert store.assets[ASSET_B].owner == OWNER_3

@pytest.mark.asyncio
async def test_registration_owner_comes_from_event(store, ledger, projector):
    """Test that the contract's current owner does not leak into the row."""
    ledger.add_asset(ASSET_A, OWNER_3, description='Deed', registered_at=100)

    assert await projector.apply(registered(owner=OWNER_1))

    asset = store.assets[ASSET_A]
    assert store.transfers == []
    assert asset.owner == OWNER_1
    assert asset.description == 'Deed'
    assert asset.registered_at == 100

@pytest.mark.asyncio
async def test_registration_is_idempotent(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1, description='Deed')

    assert await projector.apply(registered())
    assert await projector.apply(registered())

    assert list(store.assets) == [ASSET_A]
    assert store.assets[ASSET_A].owner == OWNER_1

@pytest.mark.asyncio
async def test_re_registration_overwrites_details(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1, description='Old', registered_at=100)
    await projector.apply(registered())

    ledger.add_asset(ASSET_A, OWNER_1, description='New', registered_at=200)
    await projector.apply(registered())

    assert store.assets[ASSET_A].description == 'New'
    assert store.assets[ASSET_A].registered_at == 200

@pytest.mark.asyncio
async def test_re_registration_keeps_owner_from_latest_transfer(store, ledger, projector):
    """Test that re-registration does not revert an owner set by a transfer."""
    ledger.add_asset(ASSET_A, OWNER_1)
    await projector.apply(registered())
    await projector.apply(transferred(OWNER_1, OWNER_2, 10))

    await projector.apply(registered())

    assert store.assets[ASSET_A].owner == OWNER_2

@pytest.mark.asyncio
async def test_transfer_before_registration(store, ledger, projector):
    """Test that an out-of-order transfer is kept and wins on registration."""
    ledger.add_asset(ASSET_A, OWNER_1)

    assert await projector.apply(transferred(OWNER_1, OWNER_2, 10))
    assert ASSET_A not in store.assets
    assert len(store.transfers) == 1

    assert await projector.apply(registered())
    assert store.assets[ASSET_A].owner == OWNER_2

@pytest.mark.asyncio
async def test_unknown_asset_registration_is_skipped(store, projector):
    assert await projector.apply(registered()) is False
    assert store.assets == {}
    assert store.units_of_work == 0

@pytest.mark.asyncio
async def test_transient_detail_failure_propagates(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1)
    ledger.detail_failures.append(NodeConnectionError("timed out", method='eth_call'))

    with pytest.raises(NodeConnectionError):
        await projector.apply(registered())

    assert store.assets == {}
    assert store.units_of_work == 0

@pytest.mark.asyncio
async def test_permanent_detail_failure_propagates(ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1)
    ledger.detail_failures.append(NodeAuthError("denied", method='eth_call'))

    with pytest.raises(NodeAuthError):
        await projector.apply(registered())

@pytest.mark.asyncio
async def test_transfer_timestamp_uses_ingestion_clock(store, ledger, projector, clock):
    ledger.add_asset(ASSET_A, OWNER_1)
    await projector.apply(registered())
    await projector.apply(transferred(OWNER_1, OWNER_2, 10))

    assert store.transfers[0].timestamp == clock.now

@pytest.mark.asyncio
async def test_failed_unit_of_work_rolls_back(store, ledger, projector, monkeypatch):
    """Test that an error after the insert leaves no transfer behind."""
    ledger.add_asset(ASSET_A, OWNER_1)
    await projector.apply(registered())

    async def broken_update(self, asset_id, owner):
        raise ConnectionError("connection lost")

    async with store.session() as session:
        monkeypatch.setattr(type(session), "update_owner", broken_update)

    with pytest.raises(ConnectionError):
        await projector.apply(transferred(OWNER_1, OWNER_2, 10))

    assert store.transfers == []
    assert store.assets[ASSET_A].owner == OWNER_1

@pytest.mark.asyncio
async def test_reconcile_assets(store, ledger, projector):
    ledger.add_asset(ASSET_A, OWNER_1, registered_at=1)
    ledger.add_asset(ASSET_B, OWNER_2, registered_at=2)

    assert await projector.reconcile_assets() == 2
    assert store.assets[ASSET_A].owner == OWNER_1
    assert store.assets[ASSET_B].owner == OWNER_2

@pytest.mark.asyncio
async def test_apply_rejects_unknown_event(projector):
    with pytest.raises(TypeError):
        await projector.apply(object())
