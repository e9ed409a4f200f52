"""Command line interface for checking ledger connectivity"""
import asyncio

from config import load_config, SettingsError
from events import EventKind
from . import (
    SwitchAssetsClient, LedgerError, NodeConnectionError, NodeAuthError, ContractError
)

async def check_ledger(settings) -> None:
    """Exercise each ledger call against the configured node"""
    client = SwitchAssetsClient(
        settings['rpc_url'],
        settings['ws_url'],
        settings['contract_address'],
        timeout=settings['rpc_timeout'],
        max_block_range=settings['max_block_range']
    )
    try:
        print("\nTesting ledger calls:")
        print("-" * 50)

        print("1. Testing latest_block:")
        latest = await client.latest_block()
        print(f"  Success! Current block: {latest}")

        print("\n2. Testing query_events over the last range:")
        from_block = max(latest - settings['max_block_range'], 0)
        for kind in EventKind:
            logs = await client.query_events(kind, from_block, latest)
            print(f"  Success! {len(logs)} {kind.value} logs in blocks {from_block}-{latest}")

        print("\n3. Testing get_all_assets:")
        assets = await client.get_all_assets()
        print(f"  Success! Contract reports {len(assets)} assets")

        if assets:
            print("\n4. Testing get_asset_detail:")
            detail = await client.get_asset_detail(assets[0].asset_id)
            print(f"  Success! {detail.asset_id} owned by {detail.owner}")

    except NodeConnectionError as e:
        print("\nFailed to connect to ledger node:")
        print(f"  {str(e)}")

    except NodeAuthError as e:
        print("\nAuthentication failed:")
        print(f"  {str(e)}")

    except ContractError as e:
        print("\nContract call failed:")
        print(f"  {str(e)}")

    except LedgerError as e:
        print(f"\nUnexpected ledger error: {str(e)}")

    finally:
        client.close()

def main():
    try:
        settings = load_config()
    except SettingsError as e:
        print(f"\n{e}")
        return

    asyncio.run(check_ledger(settings))

if __name__ == "__main__":
    main()
