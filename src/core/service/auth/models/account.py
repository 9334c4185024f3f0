from typing import Dict, Optional

from pydantic import BaseModel, Field


DEFAULT_NOTIFICATION_PREFERENCES = {
    "trades": True,
    "priceAlerts": True,
    "news": False,
}


class AccountIdentity(BaseModel):
    """Cached copy of the backend-owned account"""
    username: str = Field(..., description="Globally unique username")
    email: Optional[str] = None
    bio: Optional[str] = None
    linked_wallet_address: Optional[str] = Field(default=None, alias="linkedWalletAddress")
    notifications: Dict[str, bool] = Field(
        default_factory=lambda: dict(DEFAULT_NOTIFICATION_PREFERENCES)
    )

    def is_linked_to(self, address: Optional[str]) -> bool:
        if not address or not self.linked_wallet_address:
            return False
        return self.linked_wallet_address.lower() == address.lower()

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "username": "alice",
                "email": "alice@example.com",
                "bio": "Staking since genesis",
                "linkedWalletAddress": "0x1111111111111111111111111111111111111111",
                "notifications": DEFAULT_NOTIFICATION_PREFERENCES
            }
        }


class ProfileUpdate(BaseModel):
    """Fields a user may change from the profile screen; unset fields are left alone"""
    username: Optional[str] = None
    bio: Optional[str] = None
    email: Optional[str] = None
    notifications: Optional[Dict[str, bool]] = None

    def changes(self) -> Dict:
        return self.model_dump(exclude_none=True)
