"""
Input DTOs for the auth flow API endpoints.

Form fields are passed through as typed strings; content rules (required
fields, password length, username availability) are enforced by the flow
controller so they surface as user notifications.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from src.core.exceptions.base import InvalidInputError
from src.core.service.auth.models.account import ProfileUpdate
from src.core.service.wallet.adapter import parse_chain_id
from src.core.service.wallet.models import WalletType


class WalletConnectRequestDto(BaseModel):
    """DTO for wallet connection request."""

    wallet_type: WalletType = Field(..., description="Wallet to connect")


class WalletLinkRequestDto(BaseModel):
    """DTO for linking a wallet to the signed-in account."""

    wallet_type: Optional[WalletType] = Field(
        None,
        description="Wallet to connect first when none is connected"
    )


class EmailSignupRequestDto(BaseModel):
    """DTO for account creation."""

    username: str = Field("", max_length=64)
    email: str = Field("", max_length=254)
    password: str = Field("", max_length=256)
    bio: Optional[str] = Field(None, max_length=500)

    class Config:
        json_schema_extra = {
            "example": {
                "username": "alice",
                "email": "alice@example.com",
                "password": "correct horse",
                "bio": "Staking since genesis"
            }
        }


class EmailLoginRequestDto(BaseModel):
    """DTO for email login."""

    email: str = Field("", max_length=254)
    password: str = Field("", max_length=256)


class ProfileUpdateRequestDto(BaseModel):
    """DTO for profile changes; omitted fields are left unchanged."""

    username: Optional[str] = Field(None, max_length=64)
    bio: Optional[str] = Field(None, max_length=500)
    email: Optional[str] = Field(None, max_length=254)
    notifications: Optional[Dict[str, bool]] = None

    def to_profile_update(self) -> ProfileUpdate:
        return ProfileUpdate(**self.model_dump())


class ProviderEvent(str, Enum):
    """Provider events a wallet bridge can forward."""
    ACCOUNTS_CHANGED = "accountsChanged"
    CHAIN_CHANGED = "chainChanged"


class WalletEventRequestDto(BaseModel):
    """DTO for a provider event pushed by the wallet bridge."""

    event: ProviderEvent = Field(..., description="Provider event name")
    accounts: List[str] = Field(default_factory=list, description="Exposed accounts for accountsChanged")
    chain_id: Optional[Union[int, str]] = Field(
        None,
        alias="chainId",
        description="New chain id for chainChanged, hex or decimal"
    )

    @field_validator("accounts")
    @classmethod
    def strip_accounts(cls, v: List[str]) -> List[str]:
        return [a.strip() for a in v if a and a.strip()]

    @field_validator("chain_id")
    @classmethod
    def check_chain_id(cls, v: Optional[Union[int, str]]) -> Optional[int]:
        if v is None:
            return v
        try:
            return parse_chain_id(v)
        except InvalidInputError as e:
            raise ValueError(e.message) from e

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "examples": [
                {"event": "accountsChanged", "accounts": ["0x2222222222222222222222222222222222222222"]},
                {"event": "chainChanged", "chainId": "0x1"}
            ]
        }
