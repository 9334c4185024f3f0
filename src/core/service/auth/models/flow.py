from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, Field

from src.core.service.auth.models.session import AuthSession
from src.core.service.wallet.models import WalletIdentity


class AuthFlowState(str, Enum):
    RESTORING = "restoring"
    WALLET_CONNECT = "wallet_connect"
    AUTH_OPTIONS = "auth_options"
    EMAIL_LOGIN = "email_login"
    EMAIL_SIGNUP = "email_signup"
    AUTHENTICATED = "authenticated"
    PROFILE = "profile"


class FlowEvent(str, Enum):
    RELOAD = "reload"
    SESSION_ABSENT = "session_absent"
    SESSION_RESTORED = "session_restored"
    SESSION_REJECTED = "session_rejected"
    WALLET_CONNECTED = "wallet_connected"
    WALLET_CONNECTED_FOR_ACCOUNT = "wallet_connected_for_account"
    CHOOSE_SIGNUP = "choose_signup"
    CHOOSE_LOGIN = "choose_login"
    BACK = "back"
    WALLET_REQUIRED = "wallet_required"
    SIGNUP_SUCCEEDED = "signup_succeeded"
    LOGIN_SUCCEEDED = "login_succeeded"
    UPGRADE_REQUESTED = "upgrade_requested"
    UPGRADE_CANCELLED = "upgrade_cancelled"
    WALLET_LINKED = "wallet_linked"
    OPEN_PROFILE = "open_profile"
    CLOSE_PROFILE = "close_profile"
    PROFILE_UPDATED = "profile_updated"
    LOGOUT = "logout"
    ACCOUNT_SWITCHED = "account_switched"
    WALLET_DISCONNECTED = "wallet_disconnected"
    CHAIN_SWITCHED = "chain_switched"


S = AuthFlowState
E = FlowEvent

# States holding a live wallet connection that provider events can invalidate
CONNECTED_STATES = (S.AUTH_OPTIONS, S.EMAIL_LOGIN, S.EMAIL_SIGNUP, S.AUTHENTICATED, S.PROFILE)

TRANSITIONS: Dict[Tuple[AuthFlowState, FlowEvent], AuthFlowState] = {
    (S.RESTORING, E.SESSION_ABSENT): S.WALLET_CONNECT,
    (S.RESTORING, E.SESSION_RESTORED): S.AUTHENTICATED,
    (S.RESTORING, E.SESSION_REJECTED): S.WALLET_CONNECT,

    (S.WALLET_CONNECT, E.WALLET_CONNECTED): S.AUTHENTICATED,
    (S.WALLET_CONNECT, E.WALLET_CONNECTED_FOR_ACCOUNT): S.AUTH_OPTIONS,

    (S.AUTH_OPTIONS, E.CHOOSE_SIGNUP): S.EMAIL_SIGNUP,
    (S.AUTH_OPTIONS, E.CHOOSE_LOGIN): S.EMAIL_LOGIN,
    (S.AUTH_OPTIONS, E.BACK): S.WALLET_CONNECT,
    (S.AUTH_OPTIONS, E.UPGRADE_CANCELLED): S.AUTHENTICATED,

    (S.EMAIL_SIGNUP, E.BACK): S.AUTH_OPTIONS,
    (S.EMAIL_SIGNUP, E.WALLET_REQUIRED): S.WALLET_CONNECT,
    (S.EMAIL_SIGNUP, E.SIGNUP_SUCCEEDED): S.AUTHENTICATED,
    (S.EMAIL_LOGIN, E.BACK): S.AUTH_OPTIONS,
    (S.EMAIL_LOGIN, E.WALLET_REQUIRED): S.WALLET_CONNECT,
    (S.EMAIL_LOGIN, E.LOGIN_SUCCEEDED): S.AUTHENTICATED,

    (S.AUTHENTICATED, E.UPGRADE_REQUESTED): S.AUTH_OPTIONS,
    (S.AUTHENTICATED, E.WALLET_LINKED): S.AUTHENTICATED,
    (S.AUTHENTICATED, E.OPEN_PROFILE): S.PROFILE,
    (S.AUTHENTICATED, E.LOGOUT): S.WALLET_CONNECT,

    (S.PROFILE, E.CLOSE_PROFILE): S.AUTHENTICATED,
    (S.PROFILE, E.PROFILE_UPDATED): S.AUTHENTICATED,
    (S.PROFILE, E.LOGOUT): S.WALLET_CONNECT,
}

for _state in S:
    # A reload can happen from anywhere, restoration included
    TRANSITIONS[(_state, E.RELOAD)] = S.RESTORING
for _state in CONNECTED_STATES + (S.WALLET_CONNECT,):
    TRANSITIONS[(_state, E.ACCOUNT_SWITCHED)] = S.WALLET_CONNECT
    TRANSITIONS[(_state, E.WALLET_DISCONNECTED)] = S.WALLET_CONNECT
    TRANSITIONS[(_state, E.CHAIN_SWITCHED)] = S.RESTORING


def next_state(current: AuthFlowState, event: FlowEvent) -> Optional[AuthFlowState]:
    """Target state for an event, or None when the event is not allowed"""
    return TRANSITIONS.get((current, event))


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    """Transient user-facing message (a toast)"""
    level: NotificationLevel
    message: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class FlowSnapshot(BaseModel):
    """Read-only view of the controller handed to the UI layer"""
    state: AuthFlowState
    session: Optional[AuthSession] = None
    wallet: Optional[WalletIdentity] = None
    loading: Dict[str, bool] = Field(default_factory=dict)
