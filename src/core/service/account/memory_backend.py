import hashlib
import secrets
from dataclasses import dataclass
from typing import Dict, Optional

from src.core.exceptions.base import AlreadyLinkedError, AuthRejectedError
from src.core.logger.logger import get_logger
from src.core.service.account.backend import AccountBackend
from src.core.service.auth.models.account import AccountIdentity, ProfileUpdate
from src.core.service.auth.models.link import LinkProof
from src.core.service.auth.signature_verification import SignatureVerificationService

logger = get_logger(__name__)


@dataclass
class _StoredAccount:
    account: AccountIdentity
    salt: str
    password_hash: str


def _hash_password(password: str, salt: str) -> str:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), bytes.fromhex(salt), 100_000).hex()


class InMemoryAccountBackend(AccountBackend):
    """
    Process-local account service for development and tests.

    Enforces the same rules as the real service: unique usernames and emails,
    one account per wallet, and a valid signature on any proof it is sent.
    """

    def __init__(self):
        super().__init__()
        self._accounts: Dict[str, _StoredAccount] = {}
        self._wallet_owners: Dict[str, str] = {}
        self._signatures = SignatureVerificationService()
        self._email: Optional[str] = None

    async def signup(
        self,
        email: str,
        password: str,
        username: str,
        bio: Optional[str] = None
    ) -> AccountIdentity:
        key = email.strip().lower()
        if key in self._accounts:
            raise AuthRejectedError("An account with this email already exists")
        if not await self.check_username_available(username):
            raise AuthRejectedError("Username is already taken")

        salt = secrets.token_hex(16)
        account = AccountIdentity(username=username, email=email, bio=bio)
        self._accounts[key] = _StoredAccount(account, salt, _hash_password(password, salt))
        logger.info("Account created", extra={"username": username})
        return self._sign_in(key)

    async def login(self, email: str, password: str) -> AccountIdentity:
        key = email.strip().lower()
        stored = self._accounts.get(key)
        if stored is None or not secrets.compare_digest(
            stored.password_hash, _hash_password(password, stored.salt)
        ):
            raise AuthRejectedError("Invalid email or password")
        return self._sign_in(key)

    async def logout(self) -> None:
        self._email = None
        self.current_user = None

    async def update_profile(self, changes: ProfileUpdate) -> AccountIdentity:
        stored = self._require_signed_in()
        update = changes.changes()
        if "username" in update and update["username"] != stored.account.username:
            if not await self.check_username_available(update["username"]):
                raise AuthRejectedError("Username is already taken")
        stored.account = stored.account.model_copy(update=update)
        self.current_user = stored.account
        return stored.account

    async def link_wallet_address(self, address: str, proof: Optional[LinkProof] = None) -> AccountIdentity:
        stored = self._require_signed_in()
        if proof is not None:
            is_valid, error = self._signatures.verify_signature(address, proof.signature, proof.message)
            if not is_valid:
                raise AuthRejectedError(error)

        owner = self._wallet_owners.get(address.lower())
        if owner is not None and owner != self._email:
            raise AlreadyLinkedError()

        self._wallet_owners[address.lower()] = self._email
        stored.account = stored.account.model_copy(update={"linked_wallet_address": address})
        self.current_user = stored.account
        logger.info(
            "Wallet linked to account",
            extra={"username": stored.account.username, "address": address}
        )
        return stored.account

    async def check_username_available(self, username: str) -> bool:
        wanted = username.strip().lower()
        return all(s.account.username.lower() != wanted for s in self._accounts.values())

    def _sign_in(self, key: str) -> AccountIdentity:
        self._email = key
        self.current_user = self._accounts[key].account
        return self.current_user

    def _require_signed_in(self) -> _StoredAccount:
        if self._email is None:
            raise AuthRejectedError("Not signed in to an account")
        return self._accounts[self._email]
