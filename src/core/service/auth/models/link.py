from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from src.core.exceptions.base import AuthErrorKind
from src.core.service.auth.models.account import AccountIdentity


class LinkProof(BaseModel):
    """Signed challenge proving control of `address`. Produced once, never stored."""
    message: str = Field(..., description="Challenge text that was signed")
    signature: str = Field(..., description="Hex-encoded personal_sign signature")
    address: str = Field(..., description="Address claiming to have signed")

    class Config:
        frozen = True


class LinkStatus(str, Enum):
    LINKED = "linked"
    FAILED = "failed"


class LinkResult(BaseModel):
    """Outcome of a linking attempt; failures leave the account untouched"""
    status: LinkStatus
    address: str
    account: Optional[AccountIdentity] = None
    error_kind: Optional[AuthErrorKind] = None
    message: Optional[str] = None

    @property
    def linked(self) -> bool:
        return self.status == LinkStatus.LINKED
