"""
Authentication flow state machine.

Sequences wallet connection, optional account signup/login, wallet linking and
session restoration. Every state change goes through the transition table in
models/flow.py; the stored session is only written after the operation it
reflects has succeeded.
"""

from collections import deque
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Union

from src.core.exceptions.base import (
    AuthErrorKind,
    AuthFlowError,
    InvalidInputError,
    InvalidTransitionError,
    NetworkError,
)
from src.core.logger.logger import get_logger
from src.core.service.account.backend import AccountBackend
from src.core.service.auth.cache.session_store import SessionStore
from src.core.service.auth.identity_linker import IdentityLinker
from src.core.service.auth.models.account import ProfileUpdate
from src.core.service.auth.models.flow import (
    AuthFlowState,
    FlowEvent,
    FlowSnapshot,
    Notification,
    NotificationLevel,
    next_state,
)
from src.core.service.auth.models.session import AuthMethod, AuthSession
from src.core.service.auth.reconnection_verifier import ReconnectionVerifier
from src.core.service.wallet.adapter import WalletProviderAdapter
from src.core.service.wallet.models import (
    WALLET_DESCRIPTORS,
    ConnectGuidance,
    GuidanceKind,
    WalletConnection,
    WalletType,
)
from src.infra.config.settings import get_settings

logger = get_logger(__name__)
settings = get_settings()

# Forms guarded by a loading flag
FORM_WALLET_CONNECT = "wallet_connect"
FORM_EMAIL_SIGNUP = "email_signup"
FORM_EMAIL_LOGIN = "email_login"
FORM_PROFILE = "profile"
FORM_WALLET_LINK = "wallet_link"

MAX_PENDING_NOTIFICATIONS = 50

ReloadHook = Callable[[], Awaitable[object]]


class AuthFlowController:
    """Owns the flow state, the current session and the live wallet connection"""

    def __init__(
        self,
        adapter: WalletProviderAdapter,
        session_store: SessionStore,
        verifier: ReconnectionVerifier,
        linker: IdentityLinker,
        backend: AccountBackend,
        reload_hook: Optional[ReloadHook] = None
    ):
        self.adapter = adapter
        self.store = session_store
        self.verifier = verifier
        self.linker = linker
        self.backend = backend
        self._reload_hook = reload_hook or self.restore

        self.state = AuthFlowState.RESTORING
        self.session: Optional[AuthSession] = None
        self.connection: Optional[WalletConnection] = None
        self.wallet_type: Optional[WalletType] = None
        self.account_intent = False
        self._loading: Dict[str, bool] = {}
        self._notifications: Deque[Notification] = deque(maxlen=MAX_PENDING_NOTIFICATIONS)

    # ------------------------------------------------------------------
    # State, loading flags and notifications
    # ------------------------------------------------------------------

    def can(self, event: FlowEvent) -> bool:
        return next_state(self.state, event) is not None

    def _require(self, event: FlowEvent) -> None:
        if not self.can(event):
            logger.warning(
                "Rejected flow event",
                extra={"state": self.state.value, "event": event.value}
            )
            raise InvalidTransitionError(
                f"Cannot handle '{event.value}' while in '{self.state.value}'"
            )

    def _fire(self, event: FlowEvent) -> AuthFlowState:
        self._require(event)
        previous, self.state = self.state, next_state(self.state, event)
        logger.info(
            "Auth flow transition",
            extra={
                "from_state": previous.value,
                "event": event.value,
                "to_state": self.state.value
            }
        )
        return self.state

    def is_loading(self, form: str) -> bool:
        return self._loading.get(form, False)

    def _begin(self, form: str) -> bool:
        if self.is_loading(form):
            logger.debug("Ignoring concurrent submission", extra={"form": form})
            return False
        self._loading[form] = True
        return True

    def _end(self, form: str) -> None:
        self._loading[form] = False

    def _notify(self, level: NotificationLevel, message: str) -> None:
        self._notifications.append(Notification(level=level, message=message))
        logger.info("Notification", extra={"level": level.value, "text": message})

    def _notify_error(self, error: AuthFlowError) -> None:
        level = NotificationLevel.INFO if error.kind == AuthErrorKind.USER_REJECTED else NotificationLevel.ERROR
        self._notify(level, error.message)

    def drain_notifications(self) -> List[Notification]:
        pending = list(self._notifications)
        self._notifications.clear()
        return pending

    def snapshot(self) -> FlowSnapshot:
        return FlowSnapshot(
            state=self.state,
            session=self.session,
            wallet=self.connection.identity if self.connection else None,
            loading={form: flag for form, flag in self._loading.items() if flag}
        )

    def _drop_connection(self) -> None:
        self.adapter.disconnect()
        self.connection = None

    async def _forget(self) -> None:
        """Clear the stored record first, then in-memory identity"""
        await self.store.clear()
        self.session = None
        self._drop_connection()

    def _superseded(self, state: AuthFlowState, connection: Optional[WalletConnection]) -> bool:
        """A provider event moved the flow on while an action was suspended"""
        if self.state == state and self.connection is connection:
            return False
        logger.warning(
            "Discarding result of superseded action",
            extra={"started_in": state.value, "state": self.state.value}
        )
        self._notify(NotificationLevel.WARNING, "Your wallet changed before the request finished. Please try again.")
        return True

    async def _commit(
        self,
        session: AuthSession,
        state: AuthFlowState,
        connection: Optional[WalletConnection]
    ) -> bool:
        """Persist and adopt a session, unless the flow moved on before or during the write"""
        if self._superseded(state, connection):
            return False
        await self.store.save(session, self.wallet_type)
        if self._superseded(state, connection):
            # The provider event cleared storage before our write landed
            await self.store.clear()
            return False
        self.session = session
        return True

    # ------------------------------------------------------------------
    # Restoration
    # ------------------------------------------------------------------

    async def restore(self) -> Optional[AuthSession]:
        """
        Silent restoration from the stored record.

        Ends in AUTHENTICATED with a verified session, or in WALLET_CONNECT with
        storage cleared whenever the record was expired, unreadable or stale.
        """
        self._fire(FlowEvent.RELOAD)
        self.session = None
        self._drop_connection()

        try:
            record = await self.store.load()
        except NetworkError as e:
            self._notify_error(e)
            self._fire(FlowEvent.SESSION_ABSENT)
            return None

        if record is None:
            self._fire(FlowEvent.SESSION_ABSENT)
            return None

        if self.store.is_expired(record):
            logger.info(
                "Stored session expired",
                extra={"timestamp": record.timestamp, "address": record.session.address}
            )
            try:
                await self.store.clear()
            except NetworkError as e:
                self._notify_error(e)
            self._fire(FlowEvent.SESSION_ABSENT)
            return None

        session = record.session
        self.session = session
        self.wallet_type = record.wallet_type

        if session.address:
            try:
                result = await self.verifier.verify(session.address, record.wallet_type)
            except NetworkError as e:
                self.session = None
                self._drop_connection()
                self._notify_error(e)
                self._fire(FlowEvent.SESSION_REJECTED)
                return None
            if not result.reconnected:
                self.session = None
                self._fire(FlowEvent.SESSION_REJECTED)
                return None

            self.connection = result.connection
            live_chain = result.connection.identity.chain_id
            if live_chain != session.chain_id:
                session = session.model_copy(update={"chain_id": live_chain})
                self.session = session

        self._fire(FlowEvent.SESSION_RESTORED)
        return session

    # ------------------------------------------------------------------
    # Wallet connection
    # ------------------------------------------------------------------

    def request_account_creation(self) -> None:
        """Next wallet connection leads to signup/login instead of wallet-only access"""
        self._require(FlowEvent.WALLET_CONNECTED_FOR_ACCOUNT)
        self.account_intent = True

    async def connect_wallet(self, wallet_type: WalletType) -> Union[WalletConnection, ConnectGuidance, None]:
        wallet_type = WalletType(wallet_type)
        self._require(FlowEvent.WALLET_CONNECTED)
        if not self._begin(FORM_WALLET_CONNECT):
            return None

        try:
            result = await self.adapter.connect(wallet_type)
            if isinstance(result, ConnectGuidance):
                level = (
                    NotificationLevel.INFO
                    if result.kind == GuidanceKind.DEEP_LINK_OPENED
                    else NotificationLevel.WARNING
                )
                self._notify(level, result.message)
                return result

            self.connection = result
            self.wallet_type = wallet_type
            name = WALLET_DESCRIPTORS[wallet_type].display_name

            if self.account_intent:
                self.account_intent = False
                self._fire(FlowEvent.WALLET_CONNECTED_FOR_ACCOUNT)
                self._notify(
                    NotificationLevel.SUCCESS,
                    f"{name} connected. Create an account or sign in to continue."
                )
                return result

            session = AuthSession.for_wallet(result.identity, created_at=self.store.now())
            try:
                await self.store.save(session, wallet_type)
            except AuthFlowError:
                self._drop_connection()
                raise

            self.session = session
            self._fire(FlowEvent.WALLET_CONNECTED)
            self._notify(
                NotificationLevel.SUCCESS,
                f"Welcome! {name} connected successfully. You now have full access to the platform!"
            )
            return result
        except AuthFlowError as e:
            self._notify_error(e)
            raise
        finally:
            self._end(FORM_WALLET_CONNECT)

    def choose_signup(self) -> AuthFlowState:
        return self._fire(FlowEvent.CHOOSE_SIGNUP)

    def choose_login(self) -> AuthFlowState:
        return self._fire(FlowEvent.CHOOSE_LOGIN)

    def back(self) -> AuthFlowState:
        if self.state == AuthFlowState.AUTH_OPTIONS:
            if self.session is not None:
                return self._fire(FlowEvent.UPGRADE_CANCELLED)
            # Leaving the options screen means picking a different wallet
            self._drop_connection()
        return self._fire(FlowEvent.BACK)

    def upgrade_account(self) -> AuthFlowState:
        """Wallet-only session opts into creating an account"""
        self._require(FlowEvent.UPGRADE_REQUESTED)
        if self.session is None or not (self.session.wallet_only and self.session.can_upgrade_account):
            raise InvalidInputError("Only wallet sessions can be upgraded to an account")
        if self.connection is None:
            raise InvalidInputError("Please connect your wallet first")
        return self._fire(FlowEvent.UPGRADE_REQUESTED)

    # ------------------------------------------------------------------
    # Email account flows
    # ------------------------------------------------------------------

    def _wallet_required(self) -> bool:
        if self.connection is not None:
            return False
        self._notify(NotificationLevel.ERROR, "Please connect your wallet first")
        self._fire(FlowEvent.WALLET_REQUIRED)
        return True

    async def sign_up(
        self,
        username: str,
        email: str,
        password: str,
        bio: Optional[str] = None
    ) -> Optional[AuthSession]:
        """
        Create an account, then link the connected wallet to it.

        A failed link does not undo the signup: the session is account-backed
        with no wallet bound, and a warning is surfaced.
        """
        self._require(FlowEvent.SIGNUP_SUCCEEDED)
        if not self._begin(FORM_EMAIL_SIGNUP):
            return None

        try:
            if self._wallet_required():
                return None

            username = (username or "").strip()
            if not username:
                raise InvalidInputError("Please enter a username")
            if not email or not password:
                raise InvalidInputError("Please enter both email and password")
            if len(password) < settings.MIN_PASSWORD_LENGTH:
                raise InvalidInputError(
                    f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters long"
                )

            state, connection = self.state, self.connection
            if not await self.backend.check_username_available(username):
                raise InvalidInputError("Username is already taken")
            if self._superseded(state, connection):
                return None

            account = await self.backend.signup(email, password, username, bio)
            if self._superseded(state, connection):
                return None
            result = await self.linker.link(account.username, connection)

            if result.linked:
                session = AuthSession.for_account(
                    result.account, created_at=self.store.now(), wallet=connection.identity
                )
            else:
                session = AuthSession.for_account(account, created_at=self.store.now())

            if not await self._commit(session, state, connection):
                return None
            self._fire(FlowEvent.SIGNUP_SUCCEEDED)

            if result.linked:
                self._notify(NotificationLevel.SUCCESS, "Account created and wallet linked successfully!")
            else:
                self._notify(
                    NotificationLevel.WARNING,
                    "Account created but wallet linking failed. You can link it later."
                )
            return session
        except AuthFlowError as e:
            self._notify_error(e)
            raise
        finally:
            self._end(FORM_EMAIL_SIGNUP)

    async def log_in(self, email: str, password: str) -> Optional[AuthSession]:
        self._require(FlowEvent.LOGIN_SUCCEEDED)
        if not self._begin(FORM_EMAIL_LOGIN):
            return None

        try:
            if self._wallet_required():
                return None
            if not email or not password:
                raise InvalidInputError("Please enter both email and password")

            state, connection = self.state, self.connection
            account = await self.backend.login(email, password)
            if self._superseded(state, connection):
                return None

            wallet = connection.identity if account.is_linked_to(connection.address) else None
            session = AuthSession.for_account(account, created_at=self.store.now(), wallet=wallet)

            if not await self._commit(session, state, connection):
                return None
            self._fire(FlowEvent.LOGIN_SUCCEEDED)
            self._notify(NotificationLevel.SUCCESS, f"Welcome back, {account.username}!")
            return session
        except AuthFlowError as e:
            self._notify_error(e)
            raise
        finally:
            self._end(FORM_EMAIL_LOGIN)

    async def link_wallet(self, wallet_type: Optional[WalletType] = None) -> Optional[AuthSession]:
        """Bind a wallet to an email-authenticated session"""
        self._require(FlowEvent.WALLET_LINKED)
        if self.session is None or self.session.auth_method != AuthMethod.EMAIL:
            raise InvalidInputError("Please login with email first, then connect your wallet")
        if not self._begin(FORM_WALLET_LINK):
            return None

        try:
            state, current, connection = self.state, self.session, self.connection
            if connection is None:
                if wallet_type is None:
                    raise InvalidInputError("Choose a wallet to link")
                result = await self.adapter.connect(WalletType(wallet_type))
                if isinstance(result, ConnectGuidance):
                    self._notify(NotificationLevel.WARNING, result.message)
                    return None
                if self._superseded(state, None):
                    self.adapter.disconnect()
                    return None
                connection = result
                self.connection = connection
                self.wallet_type = connection.wallet_type

            message = self.linker.build_challenge(current.username, connection.address)
            proof = await self.linker.sign(message, connection.signer)
            if self._superseded(state, connection):
                return None
            account = await self.linker.submit_link(proof.address, proof.signature, proof.message)

            session = AuthSession.for_account(
                account, created_at=current.created_at, wallet=connection.identity
            )
            if not await self._commit(session, state, connection):
                return None
            self._fire(FlowEvent.WALLET_LINKED)
            self._notify(NotificationLevel.SUCCESS, "Wallet linked successfully!")
            return session
        except AuthFlowError as e:
            self._notify_error(e)
            raise
        finally:
            self._end(FORM_WALLET_LINK)

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def open_profile(self) -> AuthFlowState:
        return self._fire(FlowEvent.OPEN_PROFILE)

    def close_profile(self) -> AuthFlowState:
        return self._fire(FlowEvent.CLOSE_PROFILE)

    async def update_profile(self, changes: ProfileUpdate) -> Optional[AuthSession]:
        self._require(FlowEvent.PROFILE_UPDATED)
        if self.session is None or self.session.wallet_only:
            raise InvalidInputError("Create an account to edit your profile")
        if changes.username is not None and not changes.username.strip():
            raise InvalidInputError("Please enter a username")
        if not self._begin(FORM_PROFILE):
            return None

        try:
            state, connection, current = self.state, self.connection, self.session
            account = await self.backend.update_profile(changes)
            session = AuthSession.model_validate({
                **current.model_dump(),
                "username": account.username,
                "email": account.email or current.email,
                "display_name": account.username,
                "bio": account.bio,
            })

            if not await self._commit(session, state, connection):
                return None
            self._fire(FlowEvent.PROFILE_UPDATED)
            self._notify(NotificationLevel.SUCCESS, "Profile updated successfully!")
            return session
        except AuthFlowError as e:
            self._notify_error(e)
            raise
        finally:
            self._end(FORM_PROFILE)

    # ------------------------------------------------------------------
    # Logout and provider-driven changes
    # ------------------------------------------------------------------

    async def logout(self) -> AuthFlowState:
        self._require(FlowEvent.LOGOUT)

        if self.session is not None and not self.session.wallet_only:
            try:
                await self.backend.logout()
            except AuthFlowError as e:
                logger.warning("Account logout failed", extra={"error": e.message})

        self.session = None
        self._drop_connection()
        try:
            await self.store.clear()
        except NetworkError as e:
            logger.error("Failed to clear stored session on logout", extra={"error": e.message})

        self._fire(FlowEvent.LOGOUT)
        self._notify(NotificationLevel.SUCCESS, "Logged out successfully")
        return self.state

    async def handle_account_switched(self, accounts: List[str]) -> bool:
        """Provider exposed a different account; True when a reconnect should follow"""
        if not self.can(FlowEvent.ACCOUNT_SWITCHED):
            logger.debug("Ignoring account switch", extra={"state": self.state.value})
            return False

        logger.info(
            "Wallet account switched",
            extra={"accounts": accounts, "previous_address": self.connection.address if self.connection else None}
        )
        await self._forget()
        self.account_intent = False
        self._fire(FlowEvent.ACCOUNT_SWITCHED)
        self._notify(NotificationLevel.INFO, "Wallet account changed, reconnecting...")
        return True

    async def handle_wallet_disconnected(self) -> None:
        if not self.can(FlowEvent.WALLET_DISCONNECTED):
            logger.debug("Ignoring wallet disconnect", extra={"state": self.state.value})
            return

        await self._forget()
        self.account_intent = False
        self._fire(FlowEvent.WALLET_DISCONNECTED)
        self._notify(NotificationLevel.INFO, "Wallet disconnected")

    async def handle_chain_switched(self, chain_id: int) -> None:
        """Chain-bound state cannot be hot-swapped: clear, then reload"""
        if not self.can(FlowEvent.CHAIN_SWITCHED):
            logger.debug("Ignoring chain switch", extra={"state": self.state.value, "chain_id": chain_id})
            return

        logger.info("Wallet chain switched", extra={"chain_id": chain_id})
        await self._forget()
        self._fire(FlowEvent.CHAIN_SWITCHED)
        self._notify(NotificationLevel.INFO, "Network changed, reloading...")
        await self._reload_hook()
