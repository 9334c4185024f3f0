from dataclasses import dataclass
from enum import Enum
from typing import Optional

from src.core.exceptions.base import AuthFlowError
from src.core.logger.logger import get_logger
from src.core.service.auth.cache.session_store import SessionStore
from src.core.service.wallet.adapter import WalletProviderAdapter
from src.core.service.wallet.models import WalletConnection, WalletType

logger = get_logger(__name__)


class VerificationOutcome(str, Enum):
    RECONNECTED = "reconnected"
    MISMATCH = "mismatch"
    NO_PROVIDER = "no_provider"
    UNAVAILABLE = "unavailable"


@dataclass
class VerificationResult:
    outcome: VerificationOutcome
    connection: Optional[WalletConnection] = None
    exposed_address: Optional[str] = None

    @property
    def reconnected(self) -> bool:
        return self.outcome == VerificationOutcome.RECONNECTED


class ReconnectionVerifier:
    """
    Confirms on restore that the wallet behind a persisted session is still the
    one the provider exposes, without prompting the user.

    Any outcome other than RECONNECTED clears the stored session.
    """

    def __init__(self, adapter: WalletProviderAdapter, session_store: SessionStore):
        self.adapter = adapter
        self.session_store = session_store

    async def verify(self, address: str, wallet_type: Optional[WalletType] = None) -> VerificationResult:
        try:
            accounts = await self.adapter.exposed_accounts(wallet_type)
        except AuthFlowError as e:
            logger.warning(
                "Provider unavailable during session verification",
                extra={"address": address, "error": e.message}
            )
            return await self._reject(VerificationOutcome.UNAVAILABLE, address)

        if accounts is None:
            return await self._reject(VerificationOutcome.NO_PROVIDER, address)

        exposed = accounts[0] if accounts else None
        if exposed is None or exposed.lower() != address.lower():
            return await self._reject(VerificationOutcome.MISMATCH, address, exposed)

        try:
            connection = await self.adapter.materialize(wallet_type, exposed)
        except AuthFlowError as e:
            logger.warning(
                "Failed to rebuild wallet connection",
                extra={"address": address, "error": e.message}
            )
            return await self._reject(VerificationOutcome.UNAVAILABLE, address, exposed)

        logger.info(
            "Wallet session verified",
            extra={"address": connection.address, "chain_id": connection.identity.chain_id}
        )
        return VerificationResult(
            outcome=VerificationOutcome.RECONNECTED,
            connection=connection,
            exposed_address=exposed
        )

    async def _reject(
        self,
        outcome: VerificationOutcome,
        address: str,
        exposed: Optional[str] = None
    ) -> VerificationResult:
        logger.warning(
            "Wallet session could not be verified",
            extra={"outcome": outcome.value, "address": address, "exposed_address": exposed}
        )
        self.adapter.disconnect()
        await self.session_store.clear()
        return VerificationResult(outcome=outcome, exposed_address=exposed)
