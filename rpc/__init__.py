"""RPC module for interacting with the ledger node over JSON-RPC.

This module provides:
- The ledger error taxonomy (transient vs permanent)
- LedgerRPC, a synchronous HTTP JSON-RPC client for the eth_* methods
- SwitchAssetsClient, the async contract facade used by the indexer
"""
import logging
from itertools import count
from typing import Any, Optional

import requests
from eth_abi import decode
from eth_abi.exceptions import DecodingError

logger = logging.getLogger(__name__)

class LedgerError(Exception):
    """Base exception for ledger errors.

    Attributes:
        transient: True when retrying the same call later may succeed
    """
    transient = False

    def __init__(self, message: str, transient: Optional[bool] = None):
        if transient is not None:
            self.transient = transient
        super().__init__(message)

class RPCError(LedgerError):
    """Base exception for RPC errors"""
    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        method: Optional[str] = None,
        transient: Optional[bool] = None
    ):
        self.code = code
        self.method = method
        super().__init__(
            f"RPC Error [{code}] in {method}: {message}" if code is not None else message,
            transient
        )

class NodeConnectionError(RPCError):
    """Raised when the node cannot be reached, times out or drops the stream"""
    transient = True

class NodeAuthError(RPCError):
    """Raised when authentication failed"""
    pass

class ContractError(RPCError):
    """Node returned a JSON-RPC error object

    Common error codes:
    3      - Execution reverted
    -32000 - Server error (often an execution revert)
    -32005 - Limit exceeded / rate limited
    -32600 - Invalid request
    -32601 - Method not found
    -32602 - Invalid params
    -32603 - Internal error
    """
    ERROR_MESSAGES = {
        3: "Execution reverted",
        -32000: "Server error",
        -32005: "Limit exceeded",
        -32600: "Invalid request",
        -32601: "Method not found",
        -32602: "Invalid params",
        -32603: "Internal error",
    }

    # Codes worth retrying after a backoff
    TRANSIENT_CODES = {-32005}

    def __init__(self, message: str, code: int, method: str, data: Any = None):
        self.data = data
        standard_msg = self.ERROR_MESSAGES.get(code, "Unknown error")
        full_msg = f"{standard_msg} - {message}" if message != standard_msg else message
        super().__init__(full_msg, code, method, transient=code in self.TRANSIENT_CODES)

class AssetNotFound(ContractError):
    """The contract reports that the requested asset id does not exist"""
    pass

# Error(string) selector used by Solidity revert reasons
REVERT_SELECTOR = '0x08c379a0'

def decode_revert_reason(data: Any) -> Optional[str]:
    """Extract the revert reason string from JSON-RPC error data, if any."""
    if isinstance(data, dict):
        data = data.get('data')
    if not isinstance(data, str) or not data.startswith(REVERT_SELECTOR):
        return None
    try:
        (reason,) = decode(['string'], bytes.fromhex(data[len(REVERT_SELECTOR):]))
        return reason
    except (DecodingError, ValueError):
        return None

class RPCMethod:
    """Descriptor class for RPC methods"""
    def __init__(self, method_name: str):
        self.method_name = method_name

    def __get__(self, obj, objtype=None):
        if obj is None:
            return self

        def caller(*args) -> Any:
            return obj._call_method(self.method_name, *args)

        return caller

class LedgerRPC:
    """Ledger JSON-RPC client"""

    def __init__(self, url: str, timeout: float = 10.0):
        """Initialize RPC client.

        Args:
            url: HTTP JSON-RPC endpoint
            timeout: Seconds allowed per request
        """
        self.url = url
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers['content-type'] = 'application/json'

        # Request ID counter
        self._request_ids = count(1)

    def _call_method(self, method: str, *args) -> Any:
        """Make RPC call to the ledger node

        Args:
            method: RPC method name
            *args: Method arguments

        Returns:
            Response from node

        Raises:
            NodeConnectionError: Connection to node failed, timed out or was rate limited
            NodeAuthError: Authentication failed
            ContractError: Node returned a JSON-RPC error
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": list(args),
            "id": next(self._request_ids)
        }

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise NodeConnectionError(
                f"Request timed out after {self.timeout} seconds", method=method
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise NodeConnectionError(
                f"Failed to connect to ledger node at {self.url}", method=method
            ) from e
        except requests.exceptions.RequestException as e:
            raise NodeConnectionError(f"Request failed: {str(e)}", method=method) from e

        if response.status_code in (401, 403):
            raise NodeAuthError("Authentication failed - check the RPC endpoint credentials", method=method)
        if response.status_code == 429 or response.status_code >= 500:
            raise NodeConnectionError(
                f"Node unavailable (HTTP {response.status_code})", method=method
            )

        try:
            result = response.json()
        except ValueError as e:
            raise NodeConnectionError(f"Invalid response format: {str(e)}", method=method) from e

        if isinstance(result, dict) and result.get('error') is not None:
            error = result['error']
            message = error.get('message', 'Unknown error')
            data = error.get('data')
            reason = decode_revert_reason(data) or ''
            error_class = (
                AssetNotFound
                if 'ASSET_DOES_NOT_EXIST' in message or 'ASSET_DOES_NOT_EXIST' in reason
                else ContractError
            )
            raise error_class(
                f"{message} {reason}".strip(),
                error.get('code', -1),
                method,
                data
            )

        try:
            response.raise_for_status()
            return result['result']
        except requests.exceptions.HTTPError as e:
            raise NodeConnectionError(f"HTTP error occurred: {str(e)}", method=method) from e
        except (KeyError, TypeError) as e:
            raise NodeConnectionError(f"Invalid response format: {str(e)}", method=method) from e

    def close(self) -> None:
        self.session.close()

    # Chain methods
    eth_blockNumber = RPCMethod('eth_blockNumber')
    eth_chainId = RPCMethod('eth_chainId')
    eth_getLogs = RPCMethod('eth_getLogs')
    eth_call = RPCMethod('eth_call')

from .contract import SwitchAssetsClient, AssetDetail  # noqa: E402

# Export public interface
__all__ = [
    # Error types
    'LedgerError',
    'RPCError',
    'NodeConnectionError',
    'NodeAuthError',
    'ContractError',
    'AssetNotFound',

    # Clients
    'LedgerRPC',
    'SwitchAssetsClient',
    'AssetDetail',

    'decode_revert_reason',
]
