"""
Wallet providers speaking the EIP-1193 request/event interface.

EthereumProvider is the shape of an injected provider (window.ethereum in a
browser). Two concrete providers are shipped:

    JsonRpcProvider       - forwards requests to a wallet bridge over HTTP;
                            events are pushed in by the bridge through `emit`.
    LocalAccountProvider  - in-process development wallet backed by
                            eth-account keys, with permission prompts,
                            approval/rejection, account and chain switching.
"""

import inspect
from abc import ABC, abstractmethod
from itertools import count
from typing import Any, Callable, Dict, List, Optional

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from src.core.http_client import create_client
from src.core.logger.logger import get_logger

logger = get_logger(__name__)

# EIP-1193 provider error codes
USER_REJECTED_REQUEST = 4001
UNAUTHORIZED = 4100
UNSUPPORTED_METHOD = 4200
DISCONNECTED = 4900
INTERNAL_ERROR = -32603
PARSE_ERROR = -32700

# Standard Ethereum methods
ETH_REQUEST_ACCOUNTS = "eth_requestAccounts"
ETH_ACCOUNTS = "eth_accounts"
ETH_CHAIN_ID = "eth_chainId"
PERSONAL_SIGN = "personal_sign"

# Provider events
ACCOUNTS_CHANGED = "accountsChanged"
CHAIN_CHANGED = "chainChanged"


class ProviderRpcError(Exception):
    """Error raised by a provider request, carrying the EIP-1193 code"""

    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class EthereumProvider(ABC):
    """
    Abstract injected provider.

    Capability flags mirror what wallets advertise on the injected object.
    Listeners may be plain callables or coroutine functions.
    """

    def __init__(self, wallet_kind: Optional[str] = None):
        self._listeners: Dict[str, List[Callable]] = {}
        self.is_metamask = wallet_kind == "metamask"
        self.is_trust = wallet_kind == "trust"
        self.is_coinbase_wallet = wallet_kind == "coinbase"
        self.is_coinbase_browser = False
        self.metamask_internal = False
        self.selected_address: Optional[str] = None
        # Aggregators expose the wallets they wrap
        self.providers: List["EthereumProvider"] = []

    @abstractmethod
    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Send a request to the wallet"""
        pass

    def on(self, event: str, callback: Callable) -> None:
        self._listeners.setdefault(event, []).append(callback)

    def remove_listener(self, event: str, callback: Callable) -> None:
        listeners = self._listeners.get(event, [])
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, []))

    async def emit(self, event: str, *args: Any) -> None:
        """Deliver an event to every listener, awaiting coroutine listeners in order"""
        for callback in list(self._listeners.get(event, [])):
            result = callback(*args)
            if inspect.isawaitable(result):
                await result


class JsonRpcProvider(EthereumProvider):
    """Provider forwarding requests to a wallet bridge JSON-RPC endpoint"""

    def __init__(
        self,
        rpc_url: str,
        wallet_kind: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        super().__init__(wallet_kind)
        self.rpc_url = rpc_url
        self._client = client or create_client("wallet_rpc")
        self._ids = count(1)

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.warning(
                "Wallet bridge request failed",
                extra={"rpc_method": method, "error": str(e)}
            )
            raise ProviderRpcError(DISCONNECTED, f"Wallet bridge unreachable: {e}") from e
        except ValueError as e:
            raise ProviderRpcError(PARSE_ERROR, "Invalid response from wallet bridge") from e

        if body.get("error"):
            error = body["error"]
            raise ProviderRpcError(
                error.get("code", INTERNAL_ERROR),
                error.get("message", "Wallet request failed")
            )

        result = body.get("result")
        if method in (ETH_REQUEST_ACCOUNTS, ETH_ACCOUNTS):
            self.selected_address = result[0] if result else None
        return result

    async def aclose(self) -> None:
        await self._client.aclose()


class LocalAccountProvider(EthereumProvider):
    """
    In-process wallet backed by eth-account keys.

    Accounts stay hidden from `eth_accounts` until `eth_requestAccounts` has
    been approved, the same permission model injected wallets use.
    """

    def __init__(
        self,
        accounts: Optional[List[LocalAccount]] = None,
        chain_id: int = 1337,
        wallet_kind: Optional[str] = "metamask",
        authorized: bool = False,
        approve_requests: bool = True,
        approve_signatures: bool = True
    ):
        super().__init__(wallet_kind)
        self.accounts = list(accounts) if accounts else [Account.create()]
        self.active_index = 0
        self.chain_id = chain_id
        self.authorized = authorized
        self.approve_requests = approve_requests
        self.approve_signatures = approve_signatures
        self.online = True
        self.requests: List[str] = []
        if authorized:
            self.selected_address = self.active_account.address

    @property
    def active_account(self) -> LocalAccount:
        return self.accounts[self.active_index]

    def _exposed_accounts(self) -> List[str]:
        return [self.active_account.address] if self.authorized else []

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        self.requests.append(method)
        if not self.online:
            raise ProviderRpcError(DISCONNECTED, "Provider is disconnected")

        if method == ETH_REQUEST_ACCOUNTS:
            if not self.approve_requests:
                raise ProviderRpcError(USER_REJECTED_REQUEST, "User rejected the request.")
            self.authorized = True
            self.selected_address = self.active_account.address
            return self._exposed_accounts()
        if method == ETH_ACCOUNTS:
            return self._exposed_accounts()
        if method == ETH_CHAIN_ID:
            return hex(self.chain_id)
        if method == PERSONAL_SIGN:
            return self._personal_sign(params or [])
        raise ProviderRpcError(UNSUPPORTED_METHOD, f"Unsupported method: {method}")

    def _personal_sign(self, params: List[Any]) -> str:
        if len(params) < 2:
            raise ProviderRpcError(INTERNAL_ERROR, "personal_sign expects [data, address]")
        data, address = params[0], params[1]
        if not self.authorized or address.lower() != self.active_account.address.lower():
            raise ProviderRpcError(UNAUTHORIZED, "Address has not been authorized by the user")
        if not self.approve_signatures:
            raise ProviderRpcError(USER_REJECTED_REQUEST, "User denied message signature.")

        signed = self.active_account.sign_message(encode_defunct(hexstr=data))
        return "0x" + bytes(signed.signature).hex()

    async def switch_account(self, index: int) -> None:
        self.active_index = index
        if self.authorized:
            self.selected_address = self.active_account.address
            await self.emit(ACCOUNTS_CHANGED, self._exposed_accounts())

    async def switch_chain(self, chain_id: int) -> None:
        self.chain_id = chain_id
        await self.emit(CHAIN_CHANGED, hex(chain_id))

    async def disconnect(self) -> None:
        self.authorized = False
        self.selected_address = None
        await self.emit(ACCOUNTS_CHANGED, [])
