"""
Wallet bridge endpoints.

A wallet bridge forwards provider events here; they are emitted on the live
provider so the adapter's subscriptions handle them exactly like events raised
by an injected provider.
"""

from fastapi import APIRouter, Depends

from src.api.controller.auth.auth_controller import flow_response
from src.api.controller.auth.dto.input_dto import ProviderEvent, WalletEventRequestDto
from src.api.controller.auth.dto.output_dto import FlowStateResponseDto
from src.core.dependencies import AuthRuntime, get_auth_runtime
from src.core.exceptions.base import InvalidInputError, NotInstalledError
from src.core.logger.logger import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/wallet", tags=["Wallet"])


@router.post("/events", response_model=FlowStateResponseDto)
async def push_provider_event(
    request: WalletEventRequestDto,
    runtime: AuthRuntime = Depends(get_auth_runtime)
):
    provider = runtime.adapter.attached_provider or runtime.environment.ethereum
    if provider is None:
        raise NotInstalledError("No wallet provider to deliver the event to")

    logger.info(
        "Provider event received",
        extra={"event": request.event.value, "accounts": request.accounts, "chain_id": request.chain_id}
    )

    if request.event == ProviderEvent.ACCOUNTS_CHANGED:
        await provider.emit(request.event.value, request.accounts)
    else:
        if request.chain_id is None:
            raise InvalidInputError("chainId is required for chainChanged")
        await provider.emit(request.event.value, request.chain_id)

    return flow_response(runtime.controller)
