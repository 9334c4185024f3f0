"""
Wallet provider adapter.

Normalizes injected providers (desktop extensions, mobile in-app browsers,
aggregators) into one interface: detect, connect, sign, and account/chain
change subscriptions.

Detection is a UI hint only. It may rely on user-agent heuristics because
mobile in-app browsers often omit capability flags; connecting always requires
the provider itself, and proof of identity only ever comes from a live
signature.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from urllib.parse import quote

from src.core.exceptions.base import (
    AuthFlowError,
    InvalidInputError,
    NetworkError,
    NotInstalledError,
    SigningFailedError,
    UserRejectedError,
)
from src.core.logger.logger import get_logger
from src.core.service.wallet.environment import (
    COINBASE_EXTENSION_NAMESPACE,
    WALLETCONNECT_NAMESPACE,
    ClientEnvironment,
)
from src.core.service.wallet.models import (
    WALLET_DESCRIPTORS,
    ConnectGuidance,
    GuidanceKind,
    WalletConnection,
    WalletIdentity,
    WalletType,
)
from src.core.service.wallet.providers import (
    ACCOUNTS_CHANGED,
    CHAIN_CHANGED,
    ETH_ACCOUNTS,
    ETH_CHAIN_ID,
    ETH_REQUEST_ACCOUNTS,
    PERSONAL_SIGN,
    USER_REJECTED_REQUEST,
    EthereumProvider,
    ProviderRpcError,
)
from src.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()

AccountsChangedCallback = Callable[[List[str]], Awaitable[None]]
ChainChangedCallback = Callable[[int], Awaitable[None]]


def parse_chain_id(value: Any) -> int:
    """Chain ids arrive as hex strings from providers, ints from bridges"""
    if isinstance(value, int) and not isinstance(value, bool):
        chain_id = value
    else:
        text = str(value).strip()
        try:
            chain_id = int(text, 16) if text.lower().startswith("0x") else int(text)
        except ValueError:
            raise InvalidInputError(f"Invalid chain id: {value!r}") from None

    if chain_id <= 0:
        raise InvalidInputError(f"Invalid chain id: {value!r}")
    return chain_id


class WalletSigner:
    """Signer handle bound to one provider and one address"""

    def __init__(self, provider: EthereumProvider, address: str):
        self.provider = provider
        self.address = address

    async def sign_message(self, message: str) -> str:
        data = "0x" + message.encode("utf-8").hex()
        return await self.provider.request(PERSONAL_SIGN, [data, self.address])


class WalletProviderAdapter:
    """Single owner of the active provider connection and its subscriptions"""

    def __init__(
        self,
        environment: ClientEnvironment,
        deep_link_timeout: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.environment = environment
        self.deep_link_timeout = (
            settings.DEEP_LINK_TIMEOUT_SECONDS if deep_link_timeout is None else deep_link_timeout
        )
        self._sleep = sleep
        self._accounts_changed_cb: Optional[AccountsChangedCallback] = None
        self._chain_changed_cb: Optional[ChainChangedCallback] = None
        self._attached_provider: Optional[EthereumProvider] = None
        self.connection: Optional[WalletConnection] = None

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, wallet_type: WalletType) -> bool:
        """Synchronous capability probe, no side effects"""
        wallet_type = WalletType(wallet_type)
        ethereum = self.environment.ethereum

        if wallet_type == WalletType.METAMASK:
            return self._detect_metamask()
        if wallet_type == WalletType.TRUST:
            if ethereum is None:
                return False
            if ethereum.is_trust:
                return True
            # Trust's in-app browser frequently injects an unflagged provider
            return self.environment.is_mobile() and not ethereum.is_metamask and not ethereum.is_coinbase_wallet
        if wallet_type == WalletType.COINBASE:
            if ethereum is not None and (ethereum.is_coinbase_wallet or ethereum.is_coinbase_browser):
                return True
            return COINBASE_EXTENSION_NAMESPACE in self.environment.providers
        if wallet_type == WalletType.WALLETCONNECT:
            return WALLETCONNECT_NAMESPACE in self.environment.providers
        return ethereum is not None

    def _detect_metamask(self) -> bool:
        ethereum = self.environment.ethereum
        if ethereum is None:
            return False
        if ethereum.is_metamask:
            return True
        if "MetaMaskMobile" in (self.environment.user_agent or ""):
            return True
        if self.environment.is_mobile():
            if (
                ethereum.metamask_internal
                or ethereum.selected_address is not None
                or any(p.is_metamask for p in ethereum.providers)
            ):
                return True
            # Any provider that can take requests on mobile is most likely MetaMask
            return callable(getattr(ethereum, "request", None))
        return False

    def installed_wallets(self) -> Dict[WalletType, bool]:
        return {wallet_type: self.detect(wallet_type) for wallet_type in WalletType}

    def _resolve_provider(self, wallet_type: WalletType) -> Optional[EthereumProvider]:
        """Provider a connection attempt may use; stricter than detection"""
        ethereum = self.environment.ethereum

        if wallet_type == WalletType.METAMASK:
            if not self._detect_metamask():
                return None
            nested = next((p for p in ethereum.providers if p.is_metamask), None)
            return nested or ethereum
        if wallet_type == WalletType.TRUST:
            return ethereum if ethereum is not None and ethereum.is_trust else None
        if wallet_type == WalletType.COINBASE:
            if ethereum is not None and ethereum.is_coinbase_wallet:
                return ethereum
            return self.environment.providers.get(COINBASE_EXTENSION_NAMESPACE)
        if wallet_type == WalletType.WALLETCONNECT:
            return self.environment.providers.get(WALLETCONNECT_NAMESPACE)
        return ethereum

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self, wallet_type: WalletType) -> Union[WalletConnection, ConnectGuidance]:
        """
        Request account access from the wallet.

        Returns a live connection, or guidance when the wallet is not available
        in-page. Raises UserRejectedError, NetworkError.
        """
        wallet_type = WalletType(wallet_type)
        provider = self._resolve_provider(wallet_type)
        if provider is None:
            return await self._guide_installation(wallet_type)

        accounts = await self._call(provider, ETH_REQUEST_ACCOUNTS)
        if not accounts:
            raise NetworkError("No accounts found")

        connection = await self._build_connection(provider, wallet_type, accounts[0])
        self._attach(provider)
        self.connection = connection

        logger.info(
            "Wallet connected",
            extra={
                "wallet_type": wallet_type.value,
                "address": connection.address,
                "chain_id": connection.identity.chain_id
            }
        )
        return connection

    async def materialize(self, wallet_type: Optional[WalletType], address: str) -> WalletConnection:
        """Rebuild provider/signer handles for an already-authorized address without prompting"""
        wallet_type = WalletType(wallet_type) if wallet_type else WalletType.OTHER
        provider = self._resolve_provider(wallet_type) or self.environment.ethereum
        if provider is None:
            raise NotInstalledError()

        connection = await self._build_connection(provider, wallet_type, address)
        self._attach(provider)
        self.connection = connection
        return connection

    async def exposed_accounts(self, wallet_type: Optional[WalletType] = None) -> Optional[List[str]]:
        """Read-only account query; None when no provider is present"""
        provider = None
        if wallet_type:
            provider = self._resolve_provider(WalletType(wallet_type))
        provider = provider or self.environment.ethereum
        if provider is None:
            return None
        accounts = await self._call(provider, ETH_ACCOUNTS)
        return list(accounts or [])

    async def sign_message(self, signer: WalletSigner, message: str) -> str:
        """Ask the wallet to sign; raises UserRejectedError or SigningFailedError"""
        try:
            signature = await signer.sign_message(message)
        except ProviderRpcError as e:
            if e.code == USER_REJECTED_REQUEST:
                raise UserRejectedError("Signature request cancelled by user") from e
            raise SigningFailedError(f"Failed to sign message: {e.message}") from e
        except Exception as e:
            logger.error(
                "Unexpected signing failure",
                extra={"address": signer.address, "error": str(e)}
            )
            raise SigningFailedError(f"Failed to sign message: {e}") from e

        if not signature:
            raise SigningFailedError("Wallet returned an empty signature")
        return signature

    def disconnect(self) -> None:
        """Drop the active connection and its subscriptions"""
        self.detach()
        self.connection = None

    async def _build_connection(
        self,
        provider: EthereumProvider,
        wallet_type: WalletType,
        address: str
    ) -> WalletConnection:
        chain_id = parse_chain_id(await self._call(provider, ETH_CHAIN_ID))
        identity = WalletIdentity(
            address=address,
            chain_id=chain_id,
            wallet_type=wallet_type,
            has_signer=True
        )
        return WalletConnection(
            identity=identity,
            provider=provider,
            signer=WalletSigner(provider, identity.address)
        )

    async def _call(self, provider: EthereumProvider, method: str, params: Optional[List[Any]] = None) -> Any:
        try:
            return await provider.request(method, params)
        except ProviderRpcError as e:
            raise self._translate(e, method) from e
        except Exception as e:
            logger.error(
                "Unexpected provider failure",
                extra={"rpc_method": method, "error": str(e)}
            )
            raise NetworkError(f"Wallet request failed: {e}") from e

    @staticmethod
    def _translate(error: ProviderRpcError, method: str) -> AuthFlowError:
        logger.warning(
            "Provider request rejected",
            extra={"rpc_method": method, "code": error.code, "error": error.message}
        )
        if error.code == USER_REJECTED_REQUEST:
            return UserRejectedError("Connection cancelled by user")
        return NetworkError(error.message)

    async def _guide_installation(self, wallet_type: WalletType) -> ConnectGuidance:
        descriptor = WALLET_DESCRIPTORS[wallet_type]
        name = descriptor.display_name

        if self.environment.is_mobile() and descriptor.deep_link_template:
            deep_link = descriptor.deep_link_template.format(
                host=self.environment.host,
                path=self.environment.path,
                href=quote(self.environment.location, safe="")
            )
            logger.info(
                "Handing off to wallet app",
                extra={"wallet_type": wallet_type.value, "url": deep_link}
            )
            self.environment.navigate(deep_link)
            await self._sleep(self.deep_link_timeout)

            # Still focused means the wallet app never took over
            if self.environment.has_focus():
                self.environment.navigate(descriptor.install_url)
                return ConnectGuidance(
                    kind=GuidanceKind.INSTALL_PROMPT,
                    wallet_type=wallet_type,
                    message=f"{name} app not found. Please install {name}.",
                    install_url=descriptor.install_url,
                    deep_link_url=deep_link
                )
            return ConnectGuidance(
                kind=GuidanceKind.DEEP_LINK_OPENED,
                wallet_type=wallet_type,
                message=f"Opening {name} app...",
                install_url=descriptor.install_url,
                deep_link_url=deep_link
            )

        self.environment.navigate(descriptor.install_url)
        return ConnectGuidance(
            kind=GuidanceKind.INSTALL_PROMPT,
            wallet_type=wallet_type,
            message=f"Please install {name} first",
            install_url=descriptor.install_url
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_accounts_changed(self, callback: Optional[AccountsChangedCallback]) -> None:
        self._accounts_changed_cb = callback

    def on_chain_changed(self, callback: Optional[ChainChangedCallback]) -> None:
        self._chain_changed_cb = callback

    @property
    def attached_provider(self) -> Optional[EthereumProvider]:
        return self._attached_provider

    def _attach(self, provider: EthereumProvider) -> None:
        # Old listeners go first so a reconnect never delivers events twice
        self.detach()
        provider.on(ACCOUNTS_CHANGED, self._dispatch_accounts_changed)
        provider.on(CHAIN_CHANGED, self._dispatch_chain_changed)
        self._attached_provider = provider

    def detach(self) -> None:
        provider = self._attached_provider
        if provider is None:
            return
        provider.remove_listener(ACCOUNTS_CHANGED, self._dispatch_accounts_changed)
        provider.remove_listener(CHAIN_CHANGED, self._dispatch_chain_changed)
        self._attached_provider = None
        logger.debug("Wallet subscriptions detached")

    async def _dispatch_accounts_changed(self, accounts: List[str]) -> None:
        if self._accounts_changed_cb is not None:
            await self._accounts_changed_cb(list(accounts or []))

    async def _dispatch_chain_changed(self, chain_id: Any) -> None:
        if self._chain_changed_cb is not None:
            await self._chain_changed_cb(parse_chain_id(chain_id))
