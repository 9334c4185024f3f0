import re
from typing import Dict, Optional

from src.core.exceptions.base import (
    AuthFlowError,
    InvalidInputError,
    SessionExpiredError,
    SigningFailedError,
    WalletMismatchError,
)
from src.core.logger.logger import get_logger
from src.core.service.account.backend import AccountBackend
from src.core.service.auth.models.account import AccountIdentity
from src.core.service.auth.models.link import LinkProof, LinkResult, LinkStatus
from src.core.service.auth.signature_verification import SignatureVerificationService
from src.core.service.auth.utils.clock import Clock, now_ms
from src.core.service.wallet.adapter import WalletProviderAdapter, WalletSigner
from src.core.service.wallet.models import WalletConnection
from src.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()

CHALLENGE_PATTERN = re.compile(
    r"^(?P<title>.+)\n\n"
    r"User: (?P<username>.*)\n"
    r"Wallet: (?P<address>0x[0-9a-fA-F]{40})\n"
    r"Timestamp: (?P<timestamp>\d+)$"
)


class IdentityLinker:
    """
    Challenge/response linking of a wallet address to an account.

    A proof is only submitted while its challenge is fresh, its signature
    recovers to the claimed address, and the same challenge has not been
    submitted before.
    """

    def __init__(
        self,
        adapter: WalletProviderAdapter,
        backend: AccountBackend,
        signature_service: Optional[SignatureVerificationService] = None,
        clock: Clock = now_ms,
        max_age_seconds: Optional[int] = None,
        max_skew_seconds: Optional[int] = None
    ):
        self.adapter = adapter
        self.backend = backend
        self.signature_service = signature_service or SignatureVerificationService()
        self._clock = clock
        self.max_age_ms = 1000 * (
            settings.LINK_CHALLENGE_MAX_AGE_SECONDS if max_age_seconds is None else max_age_seconds
        )
        self.max_skew_ms = 1000 * (
            settings.LINK_CHALLENGE_MAX_SKEW_SECONDS if max_skew_seconds is None else max_skew_seconds
        )
        # challenge message -> embedded timestamp
        self._consumed: Dict[str, int] = {}

    def build_challenge(self, username: str, address: str) -> str:
        return (
            f"{settings.LINK_MESSAGE_TITLE}\n\n"
            f"User: {username}\n"
            f"Wallet: {address}\n"
            f"Timestamp: {self._clock()}"
        )

    async def sign(self, message: str, signer: WalletSigner) -> LinkProof:
        signature = await self.adapter.sign_message(signer, message)
        return LinkProof(message=message, signature=signature, address=signer.address)

    def verify_proof(self, proof: LinkProof) -> None:
        """Raise unless the proof may be submitted"""
        match = CHALLENGE_PATTERN.match(proof.message)
        if match is None or match.group("title") != settings.LINK_MESSAGE_TITLE:
            raise InvalidInputError("Unrecognized link challenge")
        if match.group("address").lower() != proof.address.lower():
            raise WalletMismatchError("Link challenge was issued for a different wallet")

        now = self._clock()
        issued_at = int(match.group("timestamp"))
        if now - issued_at > self.max_age_ms:
            raise SessionExpiredError("Link challenge has expired, please sign a new one")
        if issued_at - now > self.max_skew_ms:
            raise InvalidInputError("Link challenge timestamp is in the future")

        self._prune(now)
        if proof.message in self._consumed:
            raise InvalidInputError("Link challenge has already been used")

        is_valid, error = self.signature_service.verify_signature(
            claimed_address=proof.address,
            signature=proof.signature,
            message=proof.message
        )
        if not is_valid:
            raise SigningFailedError(error)

    async def submit_link(self, address: str, signature: str, message: str) -> AccountIdentity:
        """Verify the proof locally, then ask the backend to bind the address"""
        proof = LinkProof(message=message, signature=signature, address=address)
        self.verify_proof(proof)

        # Consumed before submission; a retry needs a fresh signature
        match = CHALLENGE_PATTERN.match(message)
        self._consumed[message] = int(match.group("timestamp"))

        account = await self.backend.link_wallet_address(address, proof)
        logger.info(
            "Wallet linked",
            extra={"username": account.username, "address": address}
        )
        return account

    async def link(self, username: str, connection: WalletConnection) -> LinkResult:
        """
        Full linking sequence for an existing account: challenge, sign, submit.

        Failures are returned, not raised; the account stays valid either way.
        """
        message = self.build_challenge(username, connection.address)
        try:
            proof = await self.sign(message, connection.signer)
            account = await self.submit_link(proof.address, proof.signature, proof.message)
        except AuthFlowError as e:
            logger.warning(
                "Wallet linking failed",
                extra={"username": username, "address": connection.address, "kind": e.kind.value}
            )
            return LinkResult(
                status=LinkStatus.FAILED,
                address=connection.address,
                error_kind=e.kind,
                message=e.message
            )

        return LinkResult(status=LinkStatus.LINKED, address=connection.address, account=account)

    def _prune(self, now: int) -> None:
        stale = [m for m, issued_at in self._consumed.items() if now - issued_at > self.max_age_ms]
        for message in stale:
            del self._consumed[message]
