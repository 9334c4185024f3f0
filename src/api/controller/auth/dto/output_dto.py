"""
Output DTOs for the auth flow API endpoints.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from src.core.service.auth.models.flow import AuthFlowState, FlowSnapshot, Notification
from src.core.service.auth.models.session import AuthSession
from src.core.service.wallet.models import ConnectGuidance, WalletIdentity


class FlowStateResponseDto(BaseModel):
    """DTO for the current flow state plus notifications raised since the last response."""

    state: AuthFlowState = Field(..., description="Current flow state")
    session: Optional[AuthSession] = Field(None, description="Resolved session, if any")
    wallet: Optional[WalletIdentity] = Field(None, description="Live wallet connection, if any")
    loading: Dict[str, bool] = Field(default_factory=dict, description="Forms with a submission in flight")
    notifications: List[Notification] = Field(default_factory=list)

    @classmethod
    def from_snapshot(
        cls,
        snapshot: FlowSnapshot,
        notifications: List[Notification]
    ) -> "FlowStateResponseDto":
        return cls(
            state=snapshot.state,
            session=snapshot.session,
            wallet=snapshot.wallet,
            loading=snapshot.loading,
            notifications=notifications
        )


class WalletConnectResponseDto(FlowStateResponseDto):
    """DTO for wallet connection; guidance is set when the wallet could not be reached in-page."""

    guidance: Optional[ConnectGuidance] = None


class InstalledWalletsResponseDto(BaseModel):
    """DTO for wallet detection results."""

    mobile: bool = Field(..., description="Client user agent is a mobile device")
    wallets: Dict[str, bool] = Field(..., description="Detection result per wallet type")


class NotificationsResponseDto(BaseModel):
    notifications: List[Notification] = Field(default_factory=list)


class HealthCheckResponseDto(BaseModel):
    """DTO for health check response."""

    status: str = Field(..., description="Overall health status")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")
    services: Dict[str, str] = Field(..., description="Service health status")
    flow_state: Optional[AuthFlowState] = Field(None, description="Current auth flow state")
