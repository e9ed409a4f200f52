"""Async facade over the SwitchAssets contract.

Every call is bounded by the configured timeout; expiry raises a transient
NodeConnectionError. HTTP JSON-RPC calls are blocking (requests) and run in a
worker thread; the live log subscription uses a websocket.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

import websockets
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address
from pydantic import BaseModel

from events import DecodeError, EventKind, normalize_asset_id
from . import LedgerRPC, NodeConnectionError

logger = logging.getLogger(__name__)

ASSET_TUPLE = '(bytes32,address,string,uint256)'

def function_selector(signature: str) -> str:
    """Return the 0x-prefixed 4-byte selector of a function signature."""
    return '0x' + keccak(text=signature)[:4].hex()

GET_ASSET_SELECTOR = function_selector('getAsset(bytes32)')
GET_ALL_ASSETS_SELECTOR = function_selector('getAllAssets()')

class AssetDetail(BaseModel):
    """Asset as reported by the contract's getAsset view."""
    asset_id: str
    owner: str
    description: str
    registered_at: int

def _detail_from_tuple(values: Tuple) -> AssetDetail:
    asset_id, owner, description, registered_at = values
    return AssetDetail(
        asset_id='0x' + asset_id.hex(),
        owner=to_checksum_address(owner),
        description=description,
        registered_at=int(registered_at)
    )

def _block_of(log: Dict[str, Any]) -> int:
    value = log.get('blockNumber')
    return value if isinstance(value, int) else int(value, 16)

def _parse_frame(message: Any) -> Optional[Dict[str, Any]]:
    """Parse one websocket frame, returning None for anything but a JSON object."""
    try:
        data = json.loads(message)
    except (TypeError, ValueError):
        logger.warning(f"Skipping unparseable subscription frame: {message!r:.200}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Skipping unexpected subscription frame: {message!r:.200}")
        return None
    return data

class SwitchAssetsClient:
    """Ledger client for the SwitchAssets contract."""

    def __init__(
        self,
        rpc_url: str,
        ws_url: str,
        contract_address: str,
        timeout: float = 10.0,
        max_block_range: int = 499,
        rpc: Optional[LedgerRPC] = None
    ):
        """Initialize the client.

        Args:
            rpc_url: HTTP JSON-RPC endpoint
            ws_url: Websocket JSON-RPC endpoint for eth_subscribe
            contract_address: SwitchAssets contract address
            timeout: Seconds allowed for any single ledger call
            max_block_range: Provider limit on toBlock - fromBlock for eth_getLogs
            rpc: Optional preconfigured RPC client
        """
        self.ws_url = ws_url
        self.contract_address = to_checksum_address(contract_address)
        self.timeout = timeout
        self.max_block_range = max_block_range
        self.rpc = rpc or LedgerRPC(rpc_url, timeout)
        self._ws_request_id = 0

    async def _call(self, method: str, *args) -> Any:
        """Run a blocking RPC method in a worker thread under the timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(getattr(self.rpc, method), *args),
                timeout=self.timeout
            )
        except asyncio.TimeoutError as e:
            raise NodeConnectionError(
                f"Call timed out after {self.timeout} seconds", method=method
            ) from e

    async def latest_block(self) -> int:
        """Return the current head block number."""
        return int(await self._call('eth_blockNumber'), 16)

    async def query_events(self, kind: EventKind, from_block: int, to_block: int) -> List[Dict[str, Any]]:
        """Fetch the raw logs of one event kind in [from_block, to_block].

        Raises:
            ValueError: If the range exceeds the provider limit
        """
        if to_block - from_block > self.max_block_range:
            raise ValueError(
                f"Block range {from_block}-{to_block} exceeds provider limit of {self.max_block_range}"
            )

        logs = await self._call('eth_getLogs', {
            'address': self.contract_address,
            'fromBlock': hex(from_block),
            'toBlock': hex(to_block),
            'topics': [kind.topic]
        })
        logger.debug(f"Fetched {len(logs)} {kind.value} logs for blocks {from_block}-{to_block}")
        return sorted(logs, key=lambda log: (_block_of(log), int(log.get('logIndex') or '0x0', 16)))

    async def _eth_call(self, data: str) -> bytes:
        result = await self._call('eth_call', {'to': self.contract_address, 'data': data}, 'latest')
        return bytes.fromhex(result[2:] if result.startswith('0x') else result)

    async def get_asset_detail(self, asset_id: str) -> AssetDetail:
        """Read one asset through the contract's getAsset view.

        Raises:
            AssetNotFound: If the contract reverts with ASSET_DOES_NOT_EXIST
            DecodeError: If the call result cannot be decoded
        """
        encoded_id = bytes.fromhex(normalize_asset_id(asset_id)[2:])
        data = GET_ASSET_SELECTOR + encode(['bytes32'], [encoded_id]).hex()
        result = await self._eth_call(data)
        try:
            (values,) = decode([ASSET_TUPLE], result)
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Undecodable getAsset result for {asset_id}: {e}") from e
        return _detail_from_tuple(values)

    async def get_all_assets(self) -> List[AssetDetail]:
        """Read every asset through the contract's getAllAssets view."""
        result = await self._eth_call(GET_ALL_ASSETS_SELECTOR)
        try:
            (items,) = decode([f'{ASSET_TUPLE}[]'], result)
        except (DecodingError, ValueError) as e:
            raise DecodeError(f"Undecodable getAllAssets result: {e}") from e
        return [_detail_from_tuple(values) for values in items]

    async def _ws_subscribe(self, ws) -> Tuple[str, List[Dict[str, Any]]]:
        """Open a logs subscription for both event kinds.

        Returns:
            The subscription id and any notifications received before the reply
        """
        self._ws_request_id += 1
        request_id = self._ws_request_id
        await ws.send(json.dumps({
            'jsonrpc': '2.0',
            'id': request_id,
            'method': 'eth_subscribe',
            'params': ['logs', {
                'address': self.contract_address,
                'topics': [[kind.topic for kind in EventKind]]
            }]
        }))

        early = []
        while True:
            data = _parse_frame(await ws.recv())
            if data is None:
                continue
            if data.get('id') == request_id:
                if data.get('result'):
                    return data['result'], early
                raise NodeConnectionError(f"Subscribe failed: {data.get('error')}", method='eth_subscribe')
            if data.get('method') == 'eth_subscription':
                log = data.get('params', {}).get('result')
                if log:
                    early.append(log)

    async def subscribe_events(self, from_block: int) -> AsyncIterator[Dict[str, Any]]:
        """Yield raw logs from from_block onward, until the connection drops.

        Logs between from_block and the head at subscription time are fetched
        with bounded eth_getLogs queries; later logs come from the live
        subscription. Delivery is in non-decreasing block order.

        Raises:
            NodeConnectionError: If the handshake times out or the connection fails
        """
        # Import here to avoid circular imports
        from sync.chunks import plan_chunks

        try:
            ws = await asyncio.wait_for(
                websockets.connect(self.ws_url, ping_interval=20, ping_timeout=20),
                timeout=self.timeout
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            raise NodeConnectionError(
                f"Failed to open subscription at {self.ws_url}: {e}", method='eth_subscribe'
            ) from e

        try:
            subscription_id, early = await asyncio.wait_for(self._ws_subscribe(ws), timeout=self.timeout)
            logger.info(f"Subscribed to contract logs ({subscription_id}) from block {from_block}")

            head = await self.latest_block()

            # Catch up the gap between the boundary and the head
            for start, end in plan_chunks(from_block, head, self.max_block_range):
                logs = []
                for kind in EventKind:
                    logs.extend(await self.query_events(kind, start, end))
                for log in sorted(logs, key=lambda log: (_block_of(log), int(log.get('logIndex') or '0x0', 16))):
                    yield log

            for log in early:
                if _block_of(log) > head:
                    yield log

            async for message in ws:
                data = _parse_frame(message)
                if data is None or data.get('method') != 'eth_subscription':
                    continue
                log = data.get('params', {}).get('result')
                if log and _block_of(log) > head:
                    yield log

            logger.warning("Log subscription closed by the node")

        except asyncio.TimeoutError as e:
            raise NodeConnectionError(
                f"Subscription handshake timed out after {self.timeout} seconds", method='eth_subscribe'
            ) from e
        except websockets.exceptions.ConnectionClosed as e:
            raise NodeConnectionError(f"Subscription connection lost: {e}", method='eth_subscribe') from e
        finally:
            await ws.close()

    def close(self) -> None:
        self.rpc.close()
