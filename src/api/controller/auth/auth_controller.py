"""
Auth flow controller endpoints.

Each endpoint is one user action on the flow state machine. Domain errors are
AuthFlowError subclasses and are rendered by the global error handler.
"""

from typing import Literal

from fastapi import APIRouter, Depends

from src.api.controller.auth.dto.input_dto import (
    EmailLoginRequestDto,
    EmailSignupRequestDto,
    ProfileUpdateRequestDto,
    WalletConnectRequestDto,
    WalletLinkRequestDto,
)
from src.api.controller.auth.dto.output_dto import (
    FlowStateResponseDto,
    InstalledWalletsResponseDto,
    NotificationsResponseDto,
    WalletConnectResponseDto,
)
from src.core.dependencies import AuthRuntime, get_auth_runtime, get_flow_controller
from src.core.logger.logger import get_logger
from src.core.service.auth.flow_controller import AuthFlowController
from src.core.service.wallet.models import ConnectGuidance

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["Authentication"])


def flow_response(controller: AuthFlowController) -> FlowStateResponseDto:
    return FlowStateResponseDto.from_snapshot(controller.snapshot(), controller.drain_notifications())


@router.get("/state", response_model=FlowStateResponseDto)
async def get_state(controller: AuthFlowController = Depends(get_flow_controller)):
    """Current flow state, session and pending notifications."""
    return flow_response(controller)


@router.get("/wallets", response_model=InstalledWalletsResponseDto)
async def get_installed_wallets(runtime: AuthRuntime = Depends(get_auth_runtime)):
    """Detection hints for the wallet picker. Detection never authorizes a connection."""
    return InstalledWalletsResponseDto(
        mobile=runtime.environment.is_mobile(),
        wallets={wallet_type.value: found for wallet_type, found in runtime.adapter.installed_wallets().items()}
    )


@router.post("/wallet/intent", response_model=FlowStateResponseDto)
async def request_account_creation(controller: AuthFlowController = Depends(get_flow_controller)):
    """Mark the next wallet connection as the first step of account signup/login."""
    controller.request_account_creation()
    return flow_response(controller)


@router.post("/wallet/connect", response_model=WalletConnectResponseDto)
async def connect_wallet(
    request: WalletConnectRequestDto,
    controller: AuthFlowController = Depends(get_flow_controller)
):
    """
    Connect a wallet.

    Without account intent this authenticates a wallet-only session. When the
    wallet is not available in-page the response carries install or deep-link
    guidance and the state is unchanged.
    """
    result = await controller.connect_wallet(request.wallet_type)
    response = WalletConnectResponseDto.from_snapshot(controller.snapshot(), controller.drain_notifications())
    if isinstance(result, ConnectGuidance):
        response.guidance = result
    return response


@router.post("/options/{choice}", response_model=FlowStateResponseDto)
async def choose_option(
    choice: Literal["signup", "login"],
    controller: AuthFlowController = Depends(get_flow_controller)
):
    if choice == "signup":
        controller.choose_signup()
    else:
        controller.choose_login()
    return flow_response(controller)


@router.post("/back", response_model=FlowStateResponseDto)
async def go_back(controller: AuthFlowController = Depends(get_flow_controller)):
    controller.back()
    return flow_response(controller)


@router.post("/email/signup", response_model=FlowStateResponseDto)
async def email_signup(
    request: EmailSignupRequestDto,
    controller: AuthFlowController = Depends(get_flow_controller)
):
    """Create an account and link the connected wallet to it."""
    await controller.sign_up(
        username=request.username,
        email=request.email,
        password=request.password,
        bio=request.bio
    )
    return flow_response(controller)


@router.post("/email/login", response_model=FlowStateResponseDto)
async def email_login(
    request: EmailLoginRequestDto,
    controller: AuthFlowController = Depends(get_flow_controller)
):
    await controller.log_in(email=request.email, password=request.password)
    return flow_response(controller)


@router.post("/upgrade", response_model=FlowStateResponseDto)
async def upgrade_account(controller: AuthFlowController = Depends(get_flow_controller)):
    """Wallet-only session starts creating an account."""
    controller.upgrade_account()
    return flow_response(controller)


@router.post("/wallet/link", response_model=FlowStateResponseDto)
async def link_wallet(
    request: WalletLinkRequestDto,
    controller: AuthFlowController = Depends(get_flow_controller)
):
    """Prove control of a wallet and bind it to the signed-in account."""
    await controller.link_wallet(request.wallet_type)
    return flow_response(controller)


@router.post("/profile/open", response_model=FlowStateResponseDto)
async def open_profile(controller: AuthFlowController = Depends(get_flow_controller)):
    controller.open_profile()
    return flow_response(controller)


@router.post("/profile/close", response_model=FlowStateResponseDto)
async def close_profile(controller: AuthFlowController = Depends(get_flow_controller)):
    controller.close_profile()
    return flow_response(controller)


@router.patch("/profile", response_model=FlowStateResponseDto)
async def update_profile(
    request: ProfileUpdateRequestDto,
    controller: AuthFlowController = Depends(get_flow_controller)
):
    await controller.update_profile(request.to_profile_update())
    return flow_response(controller)


@router.post("/logout", response_model=FlowStateResponseDto)
async def logout(controller: AuthFlowController = Depends(get_flow_controller)):
    """Clear the session locally; account logout failures are logged, not raised."""
    await controller.logout()
    return flow_response(controller)


@router.get("/notifications", response_model=NotificationsResponseDto)
async def get_notifications(controller: AuthFlowController = Depends(get_flow_controller)):
    return NotificationsResponseDto(notifications=controller.drain_notifications())
