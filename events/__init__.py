"""Event decoding for the SwitchAssets contract.

This module converts raw JSON-RPC log objects into the two canonical events:
- AssetRegistered(bytes32 assetId, address assetOwner)
- OwnershipTransferred(bytes32 assetId, address oldOwner, address newOwner)

Logs whose first topic matches neither signature are dropped silently.
Logs that match a signature but cannot be decoded raise DecodeError; the
decode_events() helper logs and skips them so one bad log never halts a batch.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, Optional, Union

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

logger = logging.getLogger(__name__)

def event_topic(signature: str) -> str:
    """Return the 0x-prefixed keccak topic of an event signature."""
    return '0x' + keccak(text=signature).hex()

class EventKind(str, Enum):
    ASSET_REGISTERED = 'AssetRegistered'
    OWNERSHIP_TRANSFERRED = 'OwnershipTransferred'

    @property
    def signature(self) -> str:
        return EVENT_SIGNATURES[self]

    @property
    def topic(self) -> str:
        return EVENT_TOPICS[self]

# Every parameter is a static 32-byte word. Indexed parameters arrive in
# topics[1:], the rest in data; both follow declaration order.
EVENT_SIGNATURES = {
    EventKind.ASSET_REGISTERED: 'AssetRegistered(bytes32,address)',
    EventKind.OWNERSHIP_TRANSFERRED: 'OwnershipTransferred(bytes32,address,address)',
}

EVENT_ARG_TYPES = {
    EventKind.ASSET_REGISTERED: ['bytes32', 'address'],
    EventKind.OWNERSHIP_TRANSFERRED: ['bytes32', 'address', 'address'],
}

EVENT_TOPICS = {kind: event_topic(signature) for kind, signature in EVENT_SIGNATURES.items()}
TOPIC_TO_KIND = {topic: kind for kind, topic in EVENT_TOPICS.items()}

class DecodeError(Exception):
    """Raised when a log matches a known signature but its payload is malformed."""
    pass

@dataclass(frozen=True)
class AssetRegistered:
    asset_id: str
    owner: str
    txn_hash: str
    block_number: int
    log_index: int = 0

@dataclass(frozen=True)
class OwnershipTransferred:
    asset_id: str
    old_owner: str
    new_owner: str
    txn_hash: str
    block_number: int
    log_index: int = 0

LedgerEvent = Union[AssetRegistered, OwnershipTransferred]

def _to_hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    if isinstance(value, str):
        return value if value.startswith(('0x', '0X')) else '0x' + value
    raise TypeError(f"expected hex string or bytes, got {type(value).__name__}")

def _to_bytes(value: Any) -> bytes:
    return bytes.fromhex(_to_hex(value)[2:])

def _to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return int(_to_hex(value), 16)

def event_kind(raw: Dict[str, Any]) -> Optional[EventKind]:
    """Return the event kind of a raw log, or None for unrelated logs."""
    topics = raw.get('topics') or []
    if not topics:
        return None
    try:
        return TOPIC_TO_KIND.get(_to_hex(topics[0]).lower())
    except TypeError:
        return None

def normalize_asset_id(asset_id: Union[str, bytes]) -> str:
    """Normalize a 32-byte asset id to 0x-prefixed lowercase hex.

    Raises:
        ValueError: If the value is not 32 bytes of hex
    """
    raw = _to_bytes(asset_id.strip() if isinstance(asset_id, str) else asset_id)
    if len(raw) != 32:
        raise ValueError(f"asset id must be 32 bytes, got {len(raw)}")
    return '0x' + raw.hex()

def decode_event(raw: Dict[str, Any]) -> Optional[LedgerEvent]:
    """Decode a raw log into a canonical event.

    Args:
        raw: JSON-RPC log object (topics, data, transactionHash, blockNumber, logIndex)

    Returns:
        The decoded event, or None if the log is not a SwitchAssets event

    Raises:
        DecodeError: If the log carries a known signature but a malformed payload
    """
    kind = event_kind(raw)
    if kind is None:
        return None

    if raw.get('removed'):
        # Reorged-out logs are not retracted from the projection
        logger.warning(
            f"Ignoring removed {kind.value} log in tx {raw.get('transactionHash')}"
        )
        return None

    arg_types = EVENT_ARG_TYPES[kind]
    try:
        words = b''.join(_to_bytes(topic) for topic in raw['topics'][1:])
        words += _to_bytes(raw.get('data') or '0x')
        if len(words) != 32 * len(arg_types):
            raise DecodeError(
                f"{kind.value} payload has {len(words)} bytes, expected {32 * len(arg_types)}"
            )

        values = decode(arg_types, words)
        txn_hash = _to_hex(raw['transactionHash']).lower()
        block_number = _to_int(raw['blockNumber'])
        log_index = _to_int(raw.get('logIndex') or 0)
    except DecodeError:
        raise
    except (KeyError, TypeError, ValueError, DecodingError) as e:
        raise DecodeError(f"Malformed {kind.value} log: {e}") from e

    asset_id = '0x' + values[0].hex()
    if kind is EventKind.ASSET_REGISTERED:
        return AssetRegistered(
            asset_id=asset_id,
            owner=to_checksum_address(values[1]),
            txn_hash=txn_hash,
            block_number=block_number,
            log_index=log_index
        )

    return OwnershipTransferred(
        asset_id=asset_id,
        old_owner=to_checksum_address(values[1]),
        new_owner=to_checksum_address(values[2]),
        txn_hash=txn_hash,
        block_number=block_number,
        log_index=log_index
    )

def decode_events(raws: Iterable[Dict[str, Any]]) -> Iterator[LedgerEvent]:
    """Decode a batch of logs, skipping unrelated and malformed ones."""
    for raw in raws:
        try:
            event = decode_event(raw)
        except DecodeError as e:
            logger.warning(f"Skipping undecodable log {raw.get('transactionHash')}: {e}")
            continue
        if event is not None:
            yield event

def event_order(event: LedgerEvent) -> tuple:
    """Sort key placing events in ledger order."""
    return (event.block_number, event.log_index)

# Export public interface
__all__ = [
    'EventKind',
    'EVENT_TOPICS',
    'AssetRegistered',
    'OwnershipTransferred',
    'LedgerEvent',
    'DecodeError',
    'decode_event',
    'decode_events',
    'event_kind',
    'event_order',
    'event_topic',
    'normalize_asset_id'
]
