from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from web3 import Web3

from src.core.service.auth.models.account import AccountIdentity
from src.core.service.wallet.models import WalletIdentity, WalletType


class AuthMethod(str, Enum):
    """How the current session was established"""
    WALLET = "wallet"
    EMAIL = "email"
    LINKED = "linked"


def wallet_display_name(address: str) -> str:
    """Friendly label shown for wallet-only sessions"""
    return f"Trader_{address[-6:].upper()}"


class AuthSession(BaseModel):
    """
    Resolved authentication result.

    Holds only serializable identity facts. Provider and signer handles are
    re-derived on restore and never live here.
    """
    is_authenticated: bool = Field(default=True, alias="isAuthenticated")
    auth_method: AuthMethod = Field(..., alias="authMethod")
    wallet_only: bool = Field(default=False, alias="walletOnly")
    address: Optional[str] = None
    chain_id: Optional[int] = Field(default=None, alias="chainId")
    username: Optional[str] = None
    email: Optional[str] = None
    display_name: Optional[str] = Field(default=None, alias="displayName")
    bio: Optional[str] = None
    can_upgrade_account: bool = Field(default=False, alias="canUpgradeAccount")
    created_at: int = Field(..., alias="createdAt", description="Epoch milliseconds")

    @field_validator("address")
    @classmethod
    def normalize_address(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return Web3.to_checksum_address(v.strip().lower())

    @model_validator(mode="after")
    def check_identity_invariants(self) -> "AuthSession":
        if self.is_authenticated and not (self.address or (self.username and self.email)):
            raise ValueError("Authenticated session needs an address or a username and email")
        if self.wallet_only:
            if self.auth_method != AuthMethod.WALLET:
                raise ValueError("Wallet-only session must use wallet authentication")
            if self.username or self.email:
                raise ValueError("Wallet-only session cannot carry account fields")
        if self.auth_method == AuthMethod.LINKED and not self.address:
            raise ValueError("Linked session needs an address")
        return self

    @classmethod
    def for_wallet(cls, identity: WalletIdentity, created_at: int) -> "AuthSession":
        return cls(
            auth_method=AuthMethod.WALLET,
            wallet_only=True,
            address=identity.address,
            chain_id=identity.chain_id,
            display_name=wallet_display_name(identity.address),
            can_upgrade_account=True,
            created_at=created_at
        )

    @classmethod
    def for_account(
        cls,
        account: AccountIdentity,
        created_at: int,
        wallet: Optional[WalletIdentity] = None
    ) -> "AuthSession":
        """Account-backed session; linked only when a verified wallet is passed in"""
        return cls(
            auth_method=AuthMethod.LINKED if wallet else AuthMethod.EMAIL,
            wallet_only=False,
            address=wallet.address if wallet else None,
            chain_id=wallet.chain_id if wallet else None,
            username=account.username,
            email=account.email,
            display_name=account.username,
            bio=account.bio,
            can_upgrade_account=False,
            created_at=created_at
        )

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "isAuthenticated": True,
                "authMethod": "wallet",
                "walletOnly": True,
                "address": "0x1111111111111111111111111111111111111111",
                "chainId": 1337,
                "displayName": "Trader_111111",
                "canUpgradeAccount": True,
                "createdAt": 1707213600000
            }
        }


class PersistedSessionRecord(BaseModel):
    """Durable form of a session: key `defi-staking-auth` in client storage"""
    session: AuthSession = Field(..., alias="user")
    timestamp: int = Field(..., description="Epoch milliseconds of the last save")
    wallet_type: Optional[WalletType] = Field(default=None, alias="walletType")

    def to_storage(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    class Config:
        populate_by_name = True
