from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from web3 import Web3


class WalletType(str, Enum):
    METAMASK = "metamask"
    TRUST = "trust"
    COINBASE = "coinbase"
    WALLETCONNECT = "walletconnect"
    OTHER = "other"


class WalletIdentity(BaseModel):
    """Address and chain exposed by a live wallet connection"""
    address: str = Field(..., description="Checksum-normalized EVM address")
    chain_id: int = Field(..., description="Chain the wallet is connected to")
    wallet_type: WalletType = Field(default=WalletType.OTHER)
    has_signer: bool = Field(default=True)

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: str) -> str:
        return Web3.to_checksum_address(v.strip().lower())

    class Config:
        json_schema_extra = {
            "example": {
                "address": "0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
                "chain_id": 1337,
                "wallet_type": "metamask",
                "has_signer": True
            }
        }


@dataclass
class WalletConnection:
    """
    A live connection: the identity plus the handles it was derived from.

    Handles are process-local objects and never leave memory; the session
    record only ever receives `identity`.
    """
    identity: WalletIdentity
    provider: Any
    signer: Any

    @property
    def address(self) -> str:
        return self.identity.address

    @property
    def wallet_type(self) -> WalletType:
        return self.identity.wallet_type


class GuidanceKind(str, Enum):
    DEEP_LINK_OPENED = "deep_link_opened"
    INSTALL_PROMPT = "install_prompt"


class ConnectGuidance(BaseModel):
    """User-facing guidance produced when a wallet cannot be connected in-page"""
    kind: GuidanceKind
    wallet_type: WalletType
    message: str
    install_url: str
    deep_link_url: Optional[str] = None


@dataclass(frozen=True)
class WalletDescriptor:
    wallet_type: WalletType
    display_name: str
    install_url: str
    deep_link_template: Optional[str] = None


WALLET_DESCRIPTORS = {
    WalletType.METAMASK: WalletDescriptor(
        WalletType.METAMASK,
        "MetaMask",
        "https://metamask.io/download/",
        "https://metamask.app.link/dapp/{host}{path}",
    ),
    WalletType.TRUST: WalletDescriptor(
        WalletType.TRUST,
        "Trust Wallet",
        "https://trustwallet.com/",
        "https://link.trustwallet.com/open_url?coin_id=60&url={href}",
    ),
    WalletType.COINBASE: WalletDescriptor(
        WalletType.COINBASE,
        "Coinbase",
        "https://wallet.coinbase.com/",
        "https://go.cb-w.com/dapp?cb_url={href}",
    ),
    WalletType.WALLETCONNECT: WalletDescriptor(
        WalletType.WALLETCONNECT,
        "WalletConnect",
        "https://walletconnect.com/",
    ),
    WalletType.OTHER: WalletDescriptor(
        WalletType.OTHER,
        "Browser Wallet",
        "https://ethereum.org/wallets/",
    ),
}
