import asyncio
from contextlib import suppress
from typing import Awaitable, Callable, List, Optional

from src.core.exceptions.base import AuthFlowError
from src.core.logger.logger import get_logger
from src.core.service.auth.flow_controller import AuthFlowController
from src.core.service.auth.models.flow import AuthFlowState
from src.core.service.wallet.adapter import WalletProviderAdapter
from src.core.service.wallet.models import WalletType
from src.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()


class AccountChangeWatcher:
    """
    Feeds unsolicited provider events into the flow controller.

    An account switch clears the session and schedules a single reconnect with
    the previous wallet type; a newer switch replaces the pending attempt.
    """

    def __init__(
        self,
        adapter: WalletProviderAdapter,
        controller: AuthFlowController,
        reconnect_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        self.adapter = adapter
        self.controller = controller
        self.reconnect_delay = (
            settings.ACCOUNT_SWITCH_RECONNECT_DELAY_SECONDS if reconnect_delay is None else reconnect_delay
        )
        self._sleep = sleep
        self._reconnect_task: Optional[asyncio.Task] = None
        self.running = False

    @property
    def pending_reconnect(self) -> Optional[asyncio.Task]:
        task = self._reconnect_task
        return task if task is not None and not task.done() else None

    def start(self) -> None:
        self.adapter.on_accounts_changed(self._on_accounts_changed)
        self.adapter.on_chain_changed(self._on_chain_changed)
        self.running = True
        logger.info("Account change watcher started")

    async def stop(self) -> None:
        self.adapter.on_accounts_changed(None)
        self.adapter.on_chain_changed(None)
        self.running = False

        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        logger.info("Account change watcher stopped")

    def _cancel_pending(self) -> None:
        task = self.pending_reconnect
        if task is not None:
            task.cancel()
            logger.debug("Cancelled pending reconnect")

    async def _on_accounts_changed(self, accounts: List[str]) -> None:
        self._cancel_pending()
        if not accounts:
            await self.controller.handle_wallet_disconnected()
            return

        wallet_type = self.controller.wallet_type or WalletType.OTHER
        if await self.controller.handle_account_switched(accounts):
            self._reconnect_task = asyncio.create_task(self._reconnect_later(wallet_type))

    async def _on_chain_changed(self, chain_id: int) -> None:
        self._cancel_pending()
        await self.controller.handle_chain_switched(chain_id)

    async def _reconnect_later(self, wallet_type: WalletType) -> None:
        await self._sleep(self.reconnect_delay)

        if self.controller.state != AuthFlowState.WALLET_CONNECT:
            logger.info(
                "Skipping reconnect, flow moved on",
                extra={"state": self.controller.state.value}
            )
            return

        try:
            await self.controller.connect_wallet(wallet_type)
        except AuthFlowError as e:
            logger.warning(
                "Reconnect after account switch failed",
                extra={"wallet_type": wallet_type.value, "kind": e.kind.value}
            )
        except Exception as e:
            # Nothing awaits this task
            logger.error(
                "Unexpected reconnect failure",
                extra={"wallet_type": wallet_type.value, "error": str(e)},
                exc_info=True
            )
